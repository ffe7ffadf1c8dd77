"""
Caller identity and password handling.

Login, tokens and sessions live in the authenticating gateway in front of this
service. What arrives here is a user id the gateway has already verified; this
module turns it into an AuthContext carrying the role stored for that user.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import bcrypt

from ..models import User

ROLE_ADMIN = "ADMIN"
ROLE_MANAGER = "MANAGER"
ROLE_SALESPERSON = "SALESPERSON"


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def resolve_auth_context(session, raw_user_id: str | None) -> AuthContext | None:
    """
    Map the forwarded user id to an AuthContext.

    Returns None for a missing or malformed id, an unknown user or a
    deactivated account.
    """
    if raw_user_id is None:
        return None
    raw_user_id = raw_user_id.strip()
    if not raw_user_id.isdigit():
        return None

    user = session.get(User, int(raw_user_id))
    if user is None or not user.is_active:
        return None
    return AuthContext(user_id=user.id, role=user.role)


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password must be a string")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """
    Hash password using bcrypt (cost factor 12 by default).

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise (including a
    malformed stored hash).
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False
