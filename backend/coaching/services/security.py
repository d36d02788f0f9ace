"""Password and secret hashing."""
from passlib.context import CryptContext

from coaching.config import get_settings

settings = get_settings()

# bcrypt for passwords and activation secrets alike
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.password_hash_rounds,
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def dummy_verify() -> None:
    """Spend the time of a real verification when there is no hash to check."""
    pwd_context.dummy_verify()


def normalize_email(email: str) -> str:
    return email.strip().lower()
