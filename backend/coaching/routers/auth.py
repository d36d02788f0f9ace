"""
Authentication API endpoints.

Handles account activation, login, and session token checks.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from coaching.database import get_db
from coaching.dependencies import client_ip, get_captcha_verifier, get_email_dispatcher
from coaching.errors import Unauthorized
from coaching.models import User, UserRole
from coaching.schemas import (
    AccountActivation,
    ActivationResponse,
    ResendActivation,
    ResendActivationResponse,
    Token,
    TokenValidation,
    TokenValidationResponse,
    UserLogin,
)
from coaching.schemas import User as UserSchema
from coaching.services import auth as auth_service
from coaching.services.captcha import CaptchaVerifier
from coaching.services.email_service import EmailDispatcher
from coaching.services.tokens import validate_activation_token

router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer(auto_error=False)


# ============== Dependencies ==============

async def require_auth(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Require authentication - raises 401 if not authenticated."""
    if credentials is None:
        raise Unauthorized()

    return auth_service.authenticate(db, credentials.credentials)


async def require_admin(
    user: User = Depends(require_auth)
) -> User:
    """Require the ADMIN role - raises 401 otherwise."""
    if user.role != UserRole.ADMIN:
        raise Unauthorized("Admin access required")
    return user


# ============== Endpoints ==============

@router.post("/validate-token", response_model=TokenValidationResponse)
def validate_token(data: TokenValidation, db: Session = Depends(get_db)):
    """Check an activation link before showing the set-password form."""
    user = validate_activation_token(db, data.token, data.user_id)
    return TokenValidationResponse(email=user.email, name=user.name)


@router.post("/activate", response_model=ActivationResponse)
def activate(
    data: AccountActivation,
    request: Request,
    db: Session = Depends(get_db),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    """
    Activate an account with the token from the activation email.

    - **token**: Activation token
    - **userId**: Account id from the activation link
    - **password**: 8+ chars with lowercase, uppercase and a digit
    - **name**: Optional display name
    """
    captcha.verify(data.captcha_token, client_ip(request))
    user = auth_service.activate_account(db, data.token, data.user_id, data.password, data.name)
    return ActivationResponse(user=UserSchema.model_validate(user))


@router.post("/resend-activation", response_model=ResendActivationResponse)
def resend_activation(
    data: ResendActivation,
    request: Request,
    db: Session = Depends(get_db),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    """Send a new activation link. The response never reveals whether the account exists."""
    captcha.verify(data.captcha_token, client_ip(request))
    return auth_service.resend_activation(db, dispatcher, data.email)


@router.post("/login", response_model=Token)
def login(data: UserLogin, db: Session = Depends(get_db)):
    """Login with email and password to get an access token."""
    access_token, user = auth_service.login(db, data.email, data.password)
    return Token(access_token=access_token, user=UserSchema.model_validate(user))


@router.get("/me", response_model=UserSchema)
async def get_me(user: User = Depends(require_auth)):
    """Get current user's profile."""
    return user
