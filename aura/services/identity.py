"""
Account lookup, sign-up and sign-in against the auth_user table.
"""

import datetime
import re
from dataclasses import dataclass
from typing import Optional

import bcrypt
import jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from ..errors import BookingError, ExternalServiceError, ValidationError
from ..extensions import db
from ..models import AuthUser

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PHONE_DIGITS = 8
MAX_PHONE_DIGITS = 15
MIN_PASSWORD_LENGTH = 6


class AlreadyRegisteredError(BookingError):
    status_code = 409
    code = "already_registered"


class InvalidCredentialsError(BookingError):
    status_code = 401
    code = "invalid_credentials"


@dataclass
class Account:
    id: int
    email: str
    full_name: Optional[str]
    phone: Optional[str] = None
    role: str = "CLIENT"

    @classmethod
    def from_user(cls, user: AuthUser):
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            phone=user.phone,
            role=user.role,
        )


def is_email(contact: str) -> bool:
    return "@" in contact


def normalize_email(value: str) -> str:
    value = (value or "").strip().lower()
    if not EMAIL_RE.match(value):
        raise ValidationError("Enter a valid email address")
    return value


def normalize_phone(value: str) -> str:
    digits = re.sub(r"\D", "", value or "")
    if not (MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS):
        raise ValidationError("Enter a valid phone number with area code")
    return digits


def parse_contact(contact: str):
    """Classify a contact string as ("email", value) or ("phone", digits)."""
    contact = (contact or "").strip()
    if not contact:
        raise ValidationError("Enter your phone number or email")
    if is_email(contact):
        return "email", normalize_email(contact)
    return "phone", normalize_phone(contact)


def lookup_by_contact(contact: str) -> Optional[Account]:
    kind, value = parse_contact(contact)
    column = AuthUser.email if kind == "email" else AuthUser.phone
    try:
        user = db.session.scalar(select(AuthUser).where(column == value))
    except OperationalError as e:
        db.session.rollback()
        raise ExternalServiceError("Could not reach the account service") from e
    return Account.from_user(user) if user else None


def sign_up(email: str, password: str, full_name: str, phone: Optional[str] = None, role="CLIENT") -> Account:
    email = normalize_email(email)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters")
    if not full_name or not full_name.strip():
        raise ValidationError("Name is required")
    phone = normalize_phone(phone) if phone else None

    try:
        existing = db.session.scalar(select(AuthUser).where(AuthUser.email == email))
        if existing:
            raise AlreadyRegisteredError("Email already registered", email=email)

        hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
        user = AuthUser(
            email=email,
            password_hash=hashed_pw.decode("utf-8"),
            full_name=full_name.strip(),
            phone=phone,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise AlreadyRegisteredError("Email already registered", email=email) from e
    except OperationalError as e:
        db.session.rollback()
        raise ExternalServiceError("Could not reach the account service") from e

    return Account.from_user(user)


def sign_in(email: str, password: str) -> Account:
    try:
        email = normalize_email(email)
    except ValidationError:
        raise InvalidCredentialsError("Invalid credentials")

    try:
        user = db.session.scalar(select(AuthUser).where(AuthUser.email == email))
    except OperationalError as e:
        db.session.rollback()
        raise ExternalServiceError("Could not reach the account service") from e

    if not user or not user.password_hash or not password:
        raise InvalidCredentialsError("Invalid credentials")

    stored_hash = user.password_hash
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    if not bcrypt.checkpw(password.encode("utf-8"), stored_hash):
        raise InvalidCredentialsError("Invalid credentials")

    return Account.from_user(user)


def issue_token(account: Account, secret: str, hours=1) -> str:
    payload = {
        "user_id": account.id,
        "email": account.email,
        "role": account.role,
        "exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=hours),
    }
    return jwt.encode(payload, secret, algorithm="HS256")
