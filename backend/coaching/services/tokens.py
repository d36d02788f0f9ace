"""
Activation Token Service

Issues single-use activation secrets, validates candidates against the
stored hashes, and sweeps expired rows.

Only a bcrypt hash of each secret is persisted, so a candidate cannot be
looked up by value: validation loads the user's unused tokens and compares
against each hash in turn.
"""
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from coaching.config import get_settings
from coaching.errors import AlreadyActivated, Expired, InvalidToken
from coaching.models import ActivationToken, User
from coaching.services.security import get_password_hash, verify_password
from coaching.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits


def issue_activation_token(db: Session, user_id: str, commit: bool = True) -> str:
    """Create a token for a user and return its plaintext. The plaintext is not stored."""
    settings = get_settings()
    plaintext = secrets.token_urlsafe(TOKEN_BYTES)

    token = ActivationToken(
        user_id=user_id,
        token_hash=get_password_hash(plaintext),
        expires_at=utcnow() + timedelta(hours=settings.activation_token_expire_hours),
    )
    db.add(token)
    if commit:
        db.commit()
    else:
        db.flush()

    logger.info(f"Activation token issued for user {user_id}")
    return plaintext


def find_matching_token(db: Session, plaintext: str, user_id: str) -> Optional[ActivationToken]:
    """Return the user's unused token whose hash matches the candidate, if any."""
    candidates = (
        db.query(ActivationToken)
        .filter(ActivationToken.user_id == user_id, ActivationToken.used_at.is_(None))
        .order_by(ActivationToken.created_at.desc())
        .all()
    )
    for candidate in candidates:
        if verify_password(plaintext, candidate.token_hash):
            return candidate
    return None


def resolve_activation_token(db: Session, plaintext: str, user_id: str) -> tuple[User, ActivationToken]:
    """Validate a candidate token and return the owning user with the matched row."""
    user = db.query(User).filter(User.id == user_id).first()
    token = find_matching_token(db, plaintext, user_id) if user else None

    if token is None:
        raise InvalidToken()

    if as_utc(token.expires_at) <= utcnow():
        raise Expired()

    if user.hashed_password:
        raise AlreadyActivated()

    return user, token


def validate_activation_token(db: Session, plaintext: str, user_id: str) -> User:
    user, _ = resolve_activation_token(db, plaintext, user_id)
    return user


def claim_token(db: Session, token_id: str) -> bool:
    """Stamp a token as used. Only one caller can win for a given row."""
    claimed = (
        db.query(ActivationToken)
        .filter(ActivationToken.id == token_id, ActivationToken.used_at.is_(None))
        .update({ActivationToken.used_at: utcnow()}, synchronize_session=False)
    )
    return claimed == 1


def invalidate_user_tokens(db: Session, user_id: str) -> int:
    """Mark every unused token of a user as used. Rows are kept."""
    count = (
        db.query(ActivationToken)
        .filter(ActivationToken.user_id == user_id, ActivationToken.used_at.is_(None))
        .update({ActivationToken.used_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"Invalidated {count} activation token(s) for user {user_id}")
    return count


def sweep_expired_tokens(db: Session) -> int:
    """Delete tokens past their expiry. Unexpired rows are never touched."""
    count = (
        db.query(ActivationToken)
        .filter(ActivationToken.expires_at < utcnow())
        .delete(synchronize_session=False)
    )
    db.commit()
    return count
