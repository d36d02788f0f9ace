"""
Authentication Service

Handles account activation, login, and JWT session tokens.
"""
import logging
from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from coaching.config import get_settings
from coaching.errors import AlreadyActivated, TokenAlreadyUsed, Unauthorized
from coaching.models import Order, SignUpStatus, User
from coaching.services.security import (
    dummy_verify,
    get_password_hash,
    normalize_email,
    verify_password,
)
from coaching.services.tokens import (
    claim_token,
    invalidate_user_tokens,
    issue_activation_token,
    resolve_activation_token,
)
from coaching.timeutils import utcnow

logger = logging.getLogger(__name__)

settings = get_settings()

# JWT settings
SECRET_KEY = settings.jwt_secret_key
ALGORITHM = settings.jwt_algorithm
SESSION_TOKEN_EXPIRE_DAYS = settings.session_token_expire_days

LOGIN_FAILED_MESSAGE = "Invalid email or password"
INVALID_SESSION_MESSAGE = "Invalid or expired token"

RESEND_RESPONSE = {
    "success": True,
    "message": "If the account exists and is not activated, an activation email has been sent",
}


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(days=SESSION_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Get a user by email address."""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    """Get a user by ID."""
    return db.query(User).filter(User.id == user_id).first()


def session_claims(user: User) -> dict:
    return {"sub": user.id, "email": user.email, "role": user.role.value}


def login(db: Session, email: str, password: str) -> tuple[str, User]:
    """
    Check credentials and issue a session token.

    Unknown email, unactivated account and wrong password all fail the same
    way so the caller cannot tell them apart.
    """
    user = get_user_by_email(db, email)

    if user is None or not user.hashed_password:
        dummy_verify()
        raise Unauthorized(LOGIN_FAILED_MESSAGE)

    if not verify_password(password, user.hashed_password) or not user.is_activated:
        raise Unauthorized(LOGIN_FAILED_MESSAGE)

    token = create_access_token(session_claims(user))
    logger.info(f"User {user.id} logged in")
    return token, user


def authenticate(db: Session, token: str) -> User:
    """Resolve a session token to a live, activated user.

    The user is re-read on every call; claims inside the token are not trusted
    for role or activation state.
    """
    payload = decode_token(token)
    if payload is None:
        raise Unauthorized(INVALID_SESSION_MESSAGE)

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized(INVALID_SESSION_MESSAGE)

    user = get_user_by_id(db, str(user_id))
    if user is None or not user.is_activated:
        raise Unauthorized(INVALID_SESSION_MESSAGE)

    return user


def activate_account(
    db: Session,
    token: str,
    user_id: str,
    password: str,
    name: Optional[str] = None,
) -> User:
    """
    Exchange an activation token for a password.

    Claiming the token is a conditional update on ``used_at``; of two
    concurrent attempts with the same token only one gets past it.
    """
    user, activation_token = resolve_activation_token(db, token, user_id)

    if not claim_token(db, activation_token.id):
        db.rollback()
        raise TokenAlreadyUsed()

    now = utcnow()
    updated = (
        db.query(User)
        .filter(User.id == user.id, User.hashed_password.is_(None))
        .update(
            {
                User.hashed_password: get_password_hash(password),
                User.name: name or user.name,
                User.email_verified: True,
                User.activated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        raise AlreadyActivated()

    activated_orders = (
        db.query(Order)
        .filter(Order.user_id == user.id, Order.sign_up_status == SignUpStatus.PENDING)
        .update({Order.sign_up_status: SignUpStatus.ACTIVATED}, synchronize_session=False)
    )

    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} activated ({activated_orders} order(s) marked ACTIVATED)")
    return user


def resend_activation(db: Session, dispatcher, email: str) -> dict:
    """
    Issue a fresh activation link.

    The response is the same whether or not the account exists or is
    already active.
    """
    user = get_user_by_email(db, email)

    if user is None:
        logger.info("Activation resend requested for unknown email")
        return dict(RESEND_RESPONSE)

    if user.hashed_password or user.is_activated:
        logger.info(f"Activation resend requested for active user {user.id}")
        return dict(RESEND_RESPONSE)

    invalidate_user_tokens(db, user.id)
    plaintext = issue_activation_token(db, user.id)

    # No order reference: the user may not have one
    result = dispatcher.send_account_activation(user.email, user.id, plaintext, order_id=None)
    if not result.success:
        logger.error(f"Activation resend email failed for user {user.id}: {result.error_message}")

    return dict(RESEND_RESPONSE)
