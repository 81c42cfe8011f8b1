"""
User storage service backed by the MongoDB ``users`` collection.
Handles lookups, CRUD and the paginated listing query.
"""

from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from mongoengine import Q
from mongoengine.errors import NotUniqueError
from mongoengine.errors import ValidationError as DocumentValidationError

from userforge.models.user import PUBLIC_FIELDS, User
from userforge.utils.exceptions import ConflictError, ValidationError
from userforge.utils.logger import get_logger

from .query_builder import UserQuery

logger = get_logger(__name__)

DUPLICATE_EMAIL_MESSAGE = "User with this email already exists"


def is_valid_id(user_id: Any) -> bool:
    """True when ``user_id`` is a well-formed ObjectId string"""
    return isinstance(user_id, str) and ObjectId.is_valid(user_id)


def _document_errors(exc: DocumentValidationError) -> List[Dict[str, Any]]:
    """Document field errors as [{field, message}] keyed by API attribute name"""
    api_names = {attr: api for api, attr in PUBLIC_FIELDS.items()}
    return [
        {"field": api_names.get(field, field), "message": str(message)}
        for field, message in (exc.to_dict() or {}).items()
    ]


def _save(user: User, **kwargs: Any) -> None:
    try:
        user.save(**kwargs)
    except NotUniqueError:
        # Lost a race with a concurrent write of the same email
        raise ConflictError(DUPLICATE_EMAIL_MESSAGE)
    except DocumentValidationError as e:
        errors = _document_errors(e)
        logger.warning("User document rejected", fields=[err["field"] for err in errors])
        raise ValidationError(errors=errors)


class UserStore:
    """Data access for user documents"""

    def find_by_id(self, user_id: str) -> Optional[User]:
        """Find user by primary key. Malformed ids simply match nothing."""
        if not is_valid_id(user_id):
            return None
        return User.objects(id=ObjectId(user_id)).first()

    def find_by_email(self, email: str) -> Optional[User]:
        return User.objects(email=email.lower()).first()

    def email_taken(self, email: str, exclude_id: Optional[str] = None) -> bool:
        qs = User.objects(email=email.lower())
        if exclude_id and is_valid_id(exclude_id):
            qs = qs.filter(id__ne=ObjectId(exclude_id))
        return qs.count() > 0

    def create_user(self, **fields: Any) -> User:
        """Insert a new user. ``fields`` must already carry ``password_hash``."""
        fields["email"] = fields["email"].lower()
        if self.email_taken(fields["email"]):
            raise ConflictError(DUPLICATE_EMAIL_MESSAGE)

        user = User(**fields)
        _save(user, force_insert=True)
        return user

    def update_user(self, user_id: str, **updates: Any) -> Optional[User]:
        """Apply field updates and return the saved user, or None if it does not exist"""
        user = self.find_by_id(user_id)
        if user is None:
            return None

        if "email" in updates and updates["email"] is not None:
            updates["email"] = updates["email"].lower()
            if updates["email"] != user.email and self.email_taken(updates["email"], exclude_id=user_id):
                raise ConflictError(DUPLICATE_EMAIL_MESSAGE)

        for key, value in updates.items():
            setattr(user, key, value)
        _save(user)
        return user

    def delete_user(self, user_id: str) -> bool:
        """Hard-delete a user. Returns False when nothing was deleted."""
        if not is_valid_id(user_id):
            return False
        deleted = User.objects(id=ObjectId(user_id)).delete()
        return deleted > 0

    def list_users(self, query: UserQuery) -> Tuple[List[User], int]:
        """Run the bounded listing query.

        Returns the requested page and the total count of matching records,
        counted over the same filters and search but without pagination.
        """
        qs = User.objects(**query.mongo_filters())
        if query.search:
            qs = qs.filter(Q(name__icontains=query.search) | Q(email__icontains=query.search))

        total = qs.count()

        qs = qs.order_by(*query.order_by()).skip(query.skip).limit(query.limit)
        projection = query.projection()
        if projection is not None:
            qs = qs.only(*projection)

        users = list(qs)
        logger.debug(
            "Listed users",
            filters=list(query.mongo_filters().keys()),
            search=bool(query.search),
            page=query.page,
            limit=query.limit,
            returned=len(users),
            total=total,
        )
        return users, total
