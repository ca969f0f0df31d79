# utils/serialize.py
from bson import ObjectId

from errors import ValidationError


def parse_object_id(value: str, field: str = "id") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationError(f"{field} is not a valid id")
    return ObjectId(value)


def convert_obj_id(obj):
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, dict):
        return {k: convert_obj_id(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [convert_obj_id(v) for v in obj]
    return obj


def serialize_doc(doc):
    if doc is None:
        return None
    d = convert_obj_id(doc)
    if "_id" in d:
        d["id"] = d.pop("_id")
    for key in ("driver_requests", "passengers"):
        for entry in d.get(key) or []:
            if "_id" in entry:
                entry["id"] = entry.pop("_id")
    d.pop("password", None)
    return d
