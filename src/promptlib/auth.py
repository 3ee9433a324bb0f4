"""Account registration, password checks and session tokens."""

import logging
import sqlite3
from datetime import timedelta

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

from . import db as db_ops
from .errors import AuthFailure, EmailTaken, InvalidCredentials, ValidationFailure
from .models import Principal, utcnow

logger = logging.getLogger(__name__)

_ph = PasswordHasher()

MIN_PASSWORD_LENGTH = 6
TOKEN_ALGORITHM = "HS256"
DEFAULT_MAX_AGE = 30 * 24 * 60 * 60  # 30 days

# Pre-computed dummy hash so an unknown email takes as long as a wrong password.
_DUMMY_HASH = _ph.hash("promptlib_dummy_never_matches_any_real_password")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    """Hash a password with argon2id (salted)."""
    return _ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its argon2id hash."""
    try:
        return _ph.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


async def register(db_conn: db_ops.Database, email: str | None, password: str | None) -> Principal:
    """Create an account.

    Raises:
        ValidationFailure: Missing fields, or a password that is too short.
        EmailTaken: The normalized email is already registered.
    """
    if not email or not email.strip() or not password:
        raise ValidationFailure("Email and password are required")

    # Length is checked before touching the database
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    email = normalize_email(email)
    if "@" not in email:
        raise ValidationFailure("Email address is not valid")

    if await db_ops.find_user_by_email(db_conn, email):
        raise EmailTaken()

    try:
        user = await db_ops.create_user(db_conn, email, hash_password(password))
    except sqlite3.IntegrityError as e:
        # Lost a race with a concurrent registration of the same email
        raise EmailTaken() from e

    logger.info(f"[AUTH] Registered user {user['id']}")
    return Principal(id=user["id"], email=user["email"])


async def authenticate(db_conn: db_ops.Database, email: str | None, password: str | None) -> Principal:
    """Check credentials and return the matching principal.

    Raises:
        InvalidCredentials: For a missing field, an unknown email or a wrong password alike.
    """
    if not email or not password:
        raise InvalidCredentials()

    user = await db_ops.find_user_by_email(db_conn, normalize_email(email))

    if not user:
        # Constant-time: run argon2 verify even when the email is unknown
        verify_password(password, _DUMMY_HASH)
        raise InvalidCredentials()

    if not verify_password(password, user["password_hash"]):
        raise InvalidCredentials()

    return Principal(id=user["id"], email=user["email"])


def issue_token(principal: Principal, secret: str, max_age: int = DEFAULT_MAX_AGE) -> str:
    """Sign a session token carrying the principal."""
    now = utcnow()
    claims = {
        "sub": principal.id,
        "email": principal.email,
        "iat": now,
        "exp": now + timedelta(seconds=max_age),
    }
    return jwt.encode(claims, secret, algorithm=TOKEN_ALGORITHM)


def validate_token(token: str | None, secret: str) -> Principal:
    """Verify signature and expiry and return the principal.

    Raises:
        AuthFailure: If the token is missing, tampered with, expired or malformed.
    """
    if not token:
        raise AuthFailure()

    # Accept a raw Authorization header value
    token = token.removeprefix("Bearer ").strip()

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[TOKEN_ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("[AUTH] Rejected expired session token")
        raise AuthFailure()
    except jwt.InvalidTokenError:
        logger.debug("[AUTH] Rejected invalid session token")
        raise AuthFailure()

    email = claims.get("email")
    if not isinstance(email, str) or not email:
        raise AuthFailure()

    return Principal(id=claims["sub"], email=email)
