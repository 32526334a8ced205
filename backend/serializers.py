from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId

PUBLIC_PROFILE_FIELDS = ("firstName", "lastName", "avatar")


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()
    if isinstance(value, dict):
        return {key: serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_user(user_document) -> Dict:
    if not user_document:
        return {}
    return {
        "id": str(user_document.get("_id")),
        "email": user_document.get("email", "") or "",
        "profile": serialize_value(user_document.get("profile") or {}),
        "role": user_document.get("role", "") or "",
        "isActive": bool(user_document.get("isActive", True)),
        "lastLogin": serialize_value(user_document.get("lastLogin")),
        "created_at": serialize_value(user_document.get("created_at")),
    }


def serialize_review_author(user_document) -> Optional[Dict]:
    if not user_document:
        return None
    profile = user_document.get("profile") or {}
    return {
        "id": str(user_document.get("_id")),
        "email": user_document.get("email", "") or "",
        "profile": {
            key: serialize_value(profile[key])
            for key in PUBLIC_PROFILE_FIELDS
            if key in profile
        },
    }


def serialize_review(review_document, authors: Optional[Dict] = None) -> Dict:
    authors = authors or {}
    user_id = review_document.get("user")
    return {
        "id": str(review_document.get("_id")),
        "rating": review_document.get("rating"),
        "comment": review_document.get("comment", "") or "",
        "user": serialize_review_author(authors.get(user_id)),
        "created_at": serialize_value(review_document.get("created_at")),
    }


def serialize_product(product_document, reviews: Optional[List[Dict]] = None) -> Dict:
    serialized = {
        key: serialize_value(value)
        for key, value in product_document.items()
        if key != "_id"
    }
    serialized["id"] = str(product_document.get("_id"))
    if reviews is not None:
        serialized["reviews"] = reviews
    return serialized
