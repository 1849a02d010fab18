from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from app.portal.errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9 ()\-]{7,20}$")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
NAME_MAX_LENGTH = 100


@dataclass(frozen=True)
class LoginInput:
    email: str
    password: str


@dataclass(frozen=True)
class RegisterInput:
    name: str
    email: str
    password: str
    phone: str | None = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _str_field(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


def _check_email(email: str, errors: list[dict[str, Any]]) -> None:
    if not email:
        errors.append({"field": "email", "message": "Email is required."})
    elif len(email) > 320 or not EMAIL_RE.match(email):
        errors.append({"field": "email", "message": "Invalid email address."})


def parse_login(payload: Any) -> LoginInput:
    if not isinstance(payload, dict):
        raise ValidationError([{"field": None, "message": "Expected a JSON object."}])

    errors: list[dict[str, Any]] = []
    email = normalize_email(_str_field(payload, "email"))
    password = _str_field(payload, "password")
    _check_email(email, errors)
    if not password:
        errors.append({"field": "password", "message": "Password is required."})
    if errors:
        raise ValidationError(errors)
    return LoginInput(email=email, password=password)


def parse_register(payload: Any) -> RegisterInput:
    if not isinstance(payload, dict):
        raise ValidationError([{"field": None, "message": "Expected a JSON object."}])

    errors: list[dict[str, Any]] = []
    name = _str_field(payload, "name").strip()
    email = normalize_email(_str_field(payload, "email"))
    password = _str_field(payload, "password")
    phone = _str_field(payload, "phone").strip() or None

    if not name:
        errors.append({"field": "name", "message": "Name is required."})
    elif len(name) > NAME_MAX_LENGTH:
        errors.append({"field": "name", "message": f"Name must be at most {NAME_MAX_LENGTH} characters."})
    _check_email(email, errors)
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(
            {"field": "password", "message": f"Password must be at least {PASSWORD_MIN_LENGTH} characters."}
        )
    elif len(password) > PASSWORD_MAX_LENGTH:
        errors.append(
            {"field": "password", "message": f"Password must be at most {PASSWORD_MAX_LENGTH} characters."}
        )
    if phone is not None and not PHONE_RE.match(phone):
        errors.append({"field": "phone", "message": "Invalid phone number."})

    if errors:
        raise ValidationError(errors)
    return RegisterInput(name=name, email=email, password=password, phone=phone)
