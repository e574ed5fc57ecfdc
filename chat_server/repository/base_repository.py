from abc import ABC
from typing import Any, Dict

from bson import ObjectId
from bson.errors import InvalidId

from chat_server.exception.ChatError import ValidationError


class BaseRepository(ABC):
    """Common plumbing for collection-backed repositories.

    Soft-deleted rows are never filtered implicitly: every query helper takes
    ``include_deleted`` and callers decide.
    """
    collection_name: str = None

    def __init__(self, db, collection_name: str = None):
        self.db = db
        self.collection_name = collection_name or self.collection_name
        self.collection = db[self.collection_name]

    @staticmethod
    def to_object_id(value: Any, field: str = 'id') -> ObjectId:
        """Parse an id from the wire; malformed ids are a ValidationError."""
        if isinstance(value, ObjectId):
            return value
        try:
            return ObjectId(str(value))
        except (InvalidId, TypeError) as e:
            raise ValidationError(f'Invalid {field}: {value!r}') from e

    @staticmethod
    def deleted_filter(query: Dict[str, Any], include_deleted: bool) -> Dict[str, Any]:
        """Return ``query`` restricted to live rows unless ``include_deleted``."""
        if include_deleted:
            return dict(query)
        return {**query, 'is_deleted': {'$ne': True}}
