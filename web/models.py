"""API request models and the JSON response envelope"""

import re
from typing import Any, Dict, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator

from userforge.models.user import ROLES

NAME_LENGTH_MESSAGE = "Name must be between 2 and 50 characters"
NAME_CHARS_MESSAGE = "Name can only contain letters and spaces"
EMAIL_MESSAGE = "Please provide a valid email address"
AGE_MESSAGE = "Age must be a number between 0 and 150"
ROLE_MESSAGE = "Role must be either user or admin"

# Messages for fields missing from the request body
REQUIRED_MESSAGES: Dict[str, str] = {
    "name": "Name is required",
    "email": "Email is required",
    "password": "Password is required",
    "currentPassword": "Current password is required",
    "newPassword": "New password is required",
}

# Never echoed back in validation errors
SECRET_FIELDS = ("password", "currentPassword", "newPassword")

_NAME_PATTERN = re.compile(r"^[A-Za-z\s]+$")
_PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _check_name(value: Any) -> str:
    if not isinstance(value, str) or not 2 <= len(value.strip()) <= 50:
        raise ValueError(NAME_LENGTH_MESSAGE)
    value = value.strip()
    if not _NAME_PATTERN.match(value):
        raise ValueError(NAME_CHARS_MESSAGE)
    return value


def _check_email(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(EMAIL_MESSAGE)
    try:
        # Stored addresses must be plain ASCII in the local part
        result = validate_email(value.strip(), check_deliverability=False, allow_smtputf8=False)
    except EmailNotValidError:
        raise ValueError(EMAIL_MESSAGE)
    return result.normalized.lower()


def _check_password(value: Any, label: str = "Password") -> str:
    if not isinstance(value, str) or len(value) < 6:
        raise ValueError(f"{label} must be at least 6 characters long")
    if not _PASSWORD_PATTERN.match(value):
        raise ValueError(
            f"{label} must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return value


def _check_age(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(AGE_MESSAGE)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or not 0 <= value <= 150:
        raise ValueError(AGE_MESSAGE)
    return value


def _check_role(value: Any) -> str:
    if value not in ROLES:
        raise ValueError(ROLE_MESSAGE)
    return value


class RegisterRequest(BaseModel):
    """Self-registration. Role is always ``user``."""
    name: str
    email: str
    password: str
    age: Optional[int] = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value: Any) -> str:
        return _check_name(value)

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, value: Any) -> str:
        return _check_email(value)

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, value: Any) -> str:
        return _check_password(value)

    @field_validator("age", mode="before")
    @classmethod
    def validate_age(cls, value: Any) -> Optional[int]:
        return _check_age(value)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, value: Any) -> str:
        return _check_email(value)

    @field_validator("password", mode="before")
    @classmethod
    def password_present(cls, value: Any) -> str:
        if not isinstance(value, str) or not value:
            raise ValueError(REQUIRED_MESSAGES["password"])
        return value


class UpdatePasswordRequest(BaseModel):
    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")

    @field_validator("current_password", mode="before")
    @classmethod
    def current_present(cls, value: Any) -> str:
        if not isinstance(value, str) or not value:
            raise ValueError(REQUIRED_MESSAGES["currentPassword"])
        return value

    @field_validator("new_password", mode="before")
    @classmethod
    def new_password_strength(cls, value: Any) -> str:
        return _check_password(value, label="New password")


class CreateUserRequest(RegisterRequest):
    """Admin-side creation; may set role and initial active flag."""
    role: str = "user"
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, value: Any) -> str:
        return _check_role(value)


class UpdateUserRequest(BaseModel):
    """
    Partial update. Only fields present in the body are applied.

    ``password`` and ``role`` are accepted here so they can be dropped
    quietly; other unknown fields are kept and rejected by the service
    according to the caller's allow-list.
    """
    model_config = ConfigDict(extra="allow")

    name: str = ""
    email: str = ""
    age: Optional[int] = None
    is_active: bool = Field(default=True, alias="isActive")
    password: Any = None
    role: Any = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value: Any) -> str:
        return _check_name(value)

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, value: Any) -> str:
        return _check_email(value)

    @field_validator("age", mode="before")
    @classmethod
    def validate_age(cls, value: Any) -> Optional[int]:
        return _check_age(value)

    def changes(self) -> Dict[str, Any]:
        """Fields the client actually sent, keyed by API attribute name"""
        return self.model_dump(by_alias=True, exclude_unset=True)


def envelope(message: Optional[str] = None, data: Optional[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
    """Success envelope: {success, message?, ...extra, data?}"""
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


def error_envelope(message: str, errors: Optional[list] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    body.update(extra)
    return body
