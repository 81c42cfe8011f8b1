"""User document and its public (client-facing) shape"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from mongoengine import BooleanField, DateTimeField, EmailField, IntField, StringField

from .base import BaseDocument

ROLES = ("user", "admin")

# API attribute name -> document field name
PUBLIC_FIELDS: Dict[str, str] = {
    "id": "id",
    "name": "name",
    "email": "email",
    "age": "age",
    "role": "role",
    "isActive": "is_active",
    "lastLogin": "last_login",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


class User(BaseDocument):
    """User document.

    Fields:
    - name (str): 2-50 letters and spaces
    - email (str, unique): lower-cased login identifier
    - password_hash (str): bcrypt digest, never serialized to clients
    - age (int, optional): 0-150
    - role (str): "user" or "admin"
    - is_active (bool): deactivated users cannot log in
    - last_login (datetime, optional)
    """

    name = StringField(required=True, min_length=2, max_length=50)
    email = EmailField(required=True, unique=True)
    password_hash = StringField(required=True)
    age = IntField(min_value=0, max_value=150, null=True)
    role = StringField(required=True, choices=ROLES, default="user")
    is_active = BooleanField(required=True, default=True)
    last_login = DateTimeField(null=True)

    meta = {
        "collection": "users",
        "indexes": ["-created_at"],
    }

    @property
    def user_id(self) -> str:
        return str(self.id)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()


def user_to_public(user: User, fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Serialize a user for clients.

    ``fields`` is an allow-list of API attribute names; ``id`` is always
    included. The password hash is never part of the output.
    """
    wanted = list(PUBLIC_FIELDS) if fields is None else ["id"] + [f for f in fields if f != "id"]
    out: Dict[str, Any] = {}
    for api_name in wanted:
        attr = PUBLIC_FIELDS[api_name]
        value = user.user_id if attr == "id" else getattr(user, attr, None)
        if isinstance(value, datetime):
            value = _isoformat(value)
        out[api_name] = value
    return out
