"""Password hashing and strength validation"""

import re
import secrets
import string
import bcrypt
from realty_access.config import settings
from realty_access.errors import ValidationFailed

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password with bcrypt"""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Verify a password against a stored hash"""
    if not password_hash:
        return False
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError:
        return False


def validate_password(password: str) -> None:
    """
    Validate password strength.

    Requires at least 8 characters with an uppercase letter, a lowercase
    letter, a digit and a special character.

    Raises:
        ValidationFailed: If the password is too weak or too long
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", reason="weak_password"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailed(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes", reason="weak_password"
        )
    if not re.search(r"[A-Z]", password):
        raise ValidationFailed("Password must contain an uppercase letter", reason="weak_password")
    if not re.search(r"[a-z]", password):
        raise ValidationFailed("Password must contain a lowercase letter", reason="weak_password")
    if not re.search(r"[0-9]", password):
        raise ValidationFailed("Password must contain a digit", reason="weak_password")
    if not re.search(r"[^A-Za-z0-9]", password):
        raise ValidationFailed("Password must contain a special character", reason="weak_password")


def generate_password(length: int = 16) -> str:
    """Random password that satisfies validate_password"""
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        try:
            validate_password(candidate)
        except ValidationFailed:
            continue
        return candidate
