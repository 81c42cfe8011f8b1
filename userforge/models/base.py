"""Base document with creation/update timestamps"""

from datetime import datetime, timezone

from mongoengine import DateTimeField, Document


def utcnow() -> datetime:
    # MongoDB stores naive UTC datetimes
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BaseDocument(Document):
    """Abstract document that stamps created_at on insert and updated_at on every save"""

    created_at = DateTimeField(required=True, default=utcnow)
    updated_at = DateTimeField(required=True, default=utcnow)

    meta = {"abstract": True}

    def save(self, *args, **kwargs):
        self.updated_at = utcnow()
        return super().save(*args, **kwargs)
