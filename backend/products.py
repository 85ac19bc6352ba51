import math
import re
from typing import Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

from .errors import NotFound, ValidationError

REQUIRED_PRODUCT_FIELDS = ("name", "category")
OPTIONAL_TEXT_FIELDS = ("subCategory", "description")
LEADING_INTEGER = re.compile(r"\s*([+-]?\d+)")


def parse_object_id(value: Optional[str]) -> Optional[ObjectId]:
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def parse_limit(value) -> Optional[int]:
    """Read the leading integer of a query value, so '2.5' caps at 2."""
    match = LEADING_INTEGER.match(str(value or ""))
    return int(match.group(1)) if match else None


def clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_price(value) -> Optional[float]:
    if isinstance(value, bool):
        raise ValidationError("Price must be a valid number.", code="InvalidPrice")
    if value is None or (isinstance(value, str) and not value.strip()):
        return None

    try:
        price_value = round(float(value), 2)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a valid number.", code="InvalidPrice")

    if not math.isfinite(price_value) or price_value < 0:
        raise ValidationError("Price must be a non-negative number.", code="InvalidPrice")

    return price_value


def normalize_product_fields(payload: Dict) -> Dict[str, object]:
    """Validate a create/update payload and return the editable fields."""
    fields: Dict[str, object] = {
        name: clean_text(payload.get(name)) for name in REQUIRED_PRODUCT_FIELDS
    }
    missing = [name for name in REQUIRED_PRODUCT_FIELDS if not fields[name]]
    if missing:
        raise ValidationError(missing_fields=missing)

    for name in OPTIONAL_TEXT_FIELDS:
        fields[name] = clean_text(payload.get(name))
    fields["price"] = parse_price(payload.get("price"))
    return fields


def serialize_product(product_document) -> Dict[str, object]:
    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name"),
        "category": product_document.get("category"),
        "subCategory": product_document.get("subCategory"),
        "description": product_document.get("description"),
        "price": product_document.get("price"),
        "imageUrl": product_document.get("imageUrl"),
        "mediaKey": product_document.get("mediaKey"),
        "featured": bool(product_document.get("featured", False)),
    }


class ProductRepository:
    """CRUD access to the ``products`` collection."""

    def __init__(self, collection):
        self.collection = collection

    def get(self, product_id: str):
        object_id = parse_object_id(product_id)
        product_document = (
            self.collection.find_one({"_id": object_id}) if object_id else None
        )
        if not product_document:
            raise NotFound("Product not found.", code="ProductNotFound")
        return product_document

    def create(self, fields: Dict[str, object], image=None):
        product_document = dict(fields)
        product_document["imageUrl"] = image.url if image else None
        product_document["mediaKey"] = image.key if image else None
        product_document["featured"] = False

        result = self.collection.insert_one(product_document)
        return self.collection.find_one({"_id": result.inserted_id})

    def update(self, product_id, fields: Dict[str, object], image=None):
        """Replace the editable fields; image fields change only with a new image."""
        updates = dict(fields)
        if image is not None:
            updates["imageUrl"] = image.url
            updates["mediaKey"] = image.key
        return self._set(product_id, updates)

    def set_featured(self, product_id, featured: bool):
        if not isinstance(featured, bool):
            raise ValidationError(
                "Featured must be true or false.", code="InvalidFeatured"
            )
        return self._set(product_id, {"featured": featured})

    def delete(self, product_id) -> bool:
        object_id = parse_object_id(str(product_id))
        result = self.collection.delete_one({"_id": object_id})
        return result.deleted_count > 0

    def list(self, limit: Optional[int] = None) -> List[Dict]:
        cursor = self.collection.find()
        if limit and limit > 0:
            cursor = cursor.limit(limit)
        return list(cursor)

    def _set(self, product_id, updates: Dict[str, object]):
        object_id = parse_object_id(str(product_id))
        updated = None
        if object_id:
            updated = self.collection.find_one_and_update(
                {"_id": object_id},
                {"$set": updates},
                return_document=ReturnDocument.AFTER,
            )
        if not updated:
            raise NotFound("Product not found.", code="ProductNotFound")
        return updated
