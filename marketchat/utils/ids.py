from typing import Any, Optional

from bson import ObjectId


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def normalize_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None and "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc
