"""
Password hashing.

pbkdf2_sha256 is pure Python, so there is no native backend to install.
"""

from passlib.context import CryptContext


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash. A malformed hash never matches."""
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False
