"""Inbound payloads and their parsers.

Parsers accept the camelCase JSON bodies sent by clients and raise
``ValidationError`` naming the offending field.

Usage:
    dto = UserDto.from_payload(request.get_json())
    user = user_service.create(dto)
"""
from __future__ import annotations
import datetime
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .exceptions import ValidationError
from .models import DEFAULT_LOCALE
from . import validators

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _require_mapping(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _check(field_name: str, value: Any, validator: Callable[[Any], Any]):
    try:
        return validator(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(str(exc), field=field_name) from exc


def _string(payload: dict, key: str, required: bool = False) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required", field=key)
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field=key)
    return value


def _bool(payload: dict, key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean", field=key)
    return value


def _string_set(payload: dict, key: str, normalize: Optional[Callable[[str], str]] = None) -> set[str]:
    value = payload.get(key) or []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{key} must be a list", field=key)
    result = set()
    for item in value:
        # Accept both plain names and serialized objects ({"name": ...} / {"authority": ...})
        if isinstance(item, dict):
            item = item.get("name") or item.get("authority")
        if not isinstance(item, str):
            raise ValidationError(f"{key} must contain strings", field=key)
        result.add(_check(key, item, normalize) if normalize else item)
    return result


def parse_date(value: Any, field_name: str) -> Optional[datetime.date]:
    if value is None:
        return None
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO date", field=field_name)
    return _check(field_name, value, datetime.date.fromisoformat)


def parse_patch(payload: Any) -> dict[str, Any]:
    """Convert a camelCase PATCH body into an attribute → value mapping."""
    return {snake_case(key): value for key, value in _require_mapping(payload).items()}


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("Expected a string")
    return value


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError("Expected a boolean")
    return value


def _optional_phone(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return validators.validate_phone(_as_str(value))


USER_PATCH_CHECKS: dict[str, Callable[[Any], Any]] = {
    "first_name": lambda v: validators.validate_name(_as_str(v), "First name"),
    "last_name": lambda v: validators.validate_name(_as_str(v), "Last name"),
    "phone": _optional_phone,
    "mobile": _optional_phone,
    "locale": lambda v: validators.validate_locale(_as_str(v)),
    "enabled": _as_bool,
    "login_disabled": _as_bool,
}

ROLE_PATCH_CHECKS: dict[str, Callable[[Any], Any]] = {
    "description": lambda v: "" if v is None else _as_str(v),
    "protected": _as_bool,
}


def check_patch(fields: dict[str, Any], checks: dict[str, Callable[[Any], Any]]) -> dict[str, Any]:
    """Validate and normalize the known attributes of a parsed PATCH body in place.

    Raises:
        ValidationError: Naming the offending JSON field
    """
    for name, check in checks.items():
        if name in fields:
            fields[name] = _check(camel_case(name), fields[name], check)
    return fields


@dataclass
class UserDto:
    email: str
    first_name: str
    last_name: str
    id: Any = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    locale: str = DEFAULT_LOCALE
    roles: set[str] = field(default_factory=set)
    enabled: bool = True
    login_disabled: bool = False
    password: Optional[str] = field(default=None, repr=False)
    source: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "UserDto":
        """Parse a create/update body.

        Raises:
            ValidationError: If a field is missing or malformed
        """
        payload = _require_mapping(payload)
        email = _check("email", _string(payload, "email", required=True), validators.validate_email)
        first_name = _check(
            "firstName",
            _string(payload, "firstName", required=True),
            lambda v: validators.validate_name(v, "First name"),
        )
        last_name = _check(
            "lastName",
            _string(payload, "lastName", required=True),
            lambda v: validators.validate_name(v, "Last name"),
        )
        phone = _string(payload, "phone")
        mobile = _string(payload, "mobile")
        locale = _string(payload, "locale") or DEFAULT_LOCALE
        password = _string(payload, "password")
        return cls(
            id=payload.get("id"),
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=_check("phone", phone, validators.validate_phone) if phone else None,
            mobile=_check("mobile", mobile, validators.validate_phone) if mobile else None,
            locale=_check("locale", locale, validators.validate_locale),
            roles=_string_set(payload, "roles"),
            enabled=_bool(payload, "enabled", True),
            login_disabled=_bool(payload, "loginDisabled", False),
            password=_check("password", password, validators.validate_password) if password else None,
            source=_string(payload, "source"),
        )


@dataclass
class RoleDto:
    name: str
    description: str = ""
    protected: bool = False
    rights: set[str] = field(default_factory=set)

    @classmethod
    def from_payload(cls, payload: Any) -> "RoleDto":
        payload = _require_mapping(payload)
        name = _check(
            "name",
            _string(payload, "name", required=True),
            lambda v: validators.normalize_authority(v, "Role name"),
        )
        return cls(
            name=name,
            description=_string(payload, "description") or "",
            protected=_bool(payload, "protected", False),
            rights=_string_set(payload, "rights"),
        )


@dataclass
class RightDto:
    authority: str
    description: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "RightDto":
        payload = _require_mapping(payload)
        return cls(
            authority=_check("authority", _string(payload, "authority", required=True), validators.normalize_authority),
            description=_string(payload, "description") or "",
        )


@dataclass
class ApiTokenDto:
    description: Optional[str] = None
    valid_until: Optional[datetime.date] = None
    rights: set[str] = field(default_factory=set)

    @classmethod
    def from_payload(cls, payload: Any) -> "ApiTokenDto":
        payload = _require_mapping(payload)
        rights = _string_set(payload, "rights")
        if not rights:
            raise ValidationError("At least one right must be selected", field="rights")
        return cls(
            description=_string(payload, "description"),
            valid_until=parse_date(payload.get("validUntil"), "validUntil"),
            rights=rights,
        )


@dataclass
class PasswordUpdateRequest:
    password: str = field(repr=False)
    verification: str = field(repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "PasswordUpdateRequest":
        payload = _require_mapping(payload)
        password = _string(payload, "password", required=True)
        return cls(
            password=_check("password", password, validators.validate_password),
            verification=_string(payload, "verification", required=True),
        )


@dataclass
class LoginRequest:
    username: str
    password: str = field(repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "LoginRequest":
        payload = _require_mapping(payload)
        username = _string(payload, "username", required=True).strip().lower()
        if not username:
            raise ValidationError("username is required", field="username")
        return cls(username=username, password=_string(payload, "password", required=True))
