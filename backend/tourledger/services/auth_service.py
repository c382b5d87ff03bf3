# Overview: Service-layer operations for auth; password hashing and user accounts.

"""
Authentication Service

WHY: Every sale must be attributable to a user, and supervisors are scoped
to their own invoices by supervisor_name. Uses bcrypt for password hashing
and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, mixed case, digit and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import ROLES, User


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt (validated for strength first)."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    role: str = "supervisor",
    supervisor_name: str | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Supervisors need a supervisor_name: it is the value their sales are
    recorded under and the only invoices they can see.

    Raises:
        ValueError: unknown role, duplicate username, supervisor without name
        PasswordValidationError: If password doesn't meet requirements
    """
    username = (username or "").strip()
    if not username:
        raise ValueError("Username is required")
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    supervisor_name = (supervisor_name or "").strip() or None
    if role == "supervisor" and not supervisor_name:
        raise ValueError("Supervisors need a supervisor name")

    existing = db.session.query(User).filter(User.username == username).first()
    if existing:
        raise ValueError("Username already exists")

    password_hash = hash_password(password)

    user = User(
        username=username,
        password_hash=password_hash,
        role=role,
        supervisor_name=supervisor_name,
    )

    db.session.add(user)
    db.session.commit()
    current_app.logger.info("User %s created with role %s", user.username, user.role)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username and password.

    Returns User if credentials valid and the account is active, None otherwise.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        return user

    current_app.logger.warning("Failed login for user %s", username)
    return None
