import re
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from database import object_id, to_public, utcnow
from errors import NotFound, ValidationFailed

PRODUCTS = "products"
VARIANTS = "variants"
NEW_ARRIVAL_WINDOW = timedelta(hours=24)


def split_item_id(item_id: str) -> Tuple[str, str]:
    """Cart line ids are "<productId>_<variantId>"."""
    parts = (item_id or "").split("_")
    if len(parts) != 2 or not all(parts):
        raise ValidationFailed(f"Invalid item ID format: {item_id}")
    return parts[0], parts[1]


def summarize(product: dict) -> dict:
    variants = product.get("variants") or []
    prices = [v.get("price", 0) for v in variants if v.get("price")]
    product["totalStock"] = sum(int(v.get("stock") or 0) for v in variants)
    product["minPrice"] = min(prices) if prices else None
    product["maxPrice"] = max(prices) if prices else None
    return product


class CatalogReader:
    def __init__(self, db):
        self.db = db

    def get_product(self, product_id: str, with_variants: bool = True) -> dict:
        doc = self.db[PRODUCTS].find_one({"_id": object_id(product_id)})
        if not doc:
            raise NotFound("Product not found")
        product = to_public(doc)
        if with_variants:
            product["variants"] = self.get_variants(product["id"])
            summarize(product)
        return product

    def get_variants(self, product_id: str) -> List[dict]:
        docs = self.db[VARIANTS].find({"productId": product_id}).sort("createdAt", 1)
        return [to_public(d) for d in docs]

    def get_variant(self, product_id: str, variant_id: str) -> dict:
        doc = self.db[VARIANTS].find_one({"_id": object_id(variant_id), "productId": product_id})
        if not doc:
            raise NotFound("Product variant not found")
        return to_public(doc)

    def list_products(self, category: Optional[str] = None, name_prefix: Optional[str] = None,
                      status: Optional[str] = "verified", supplier_id: Optional[str] = None,
                      limit: int = 50, skip: int = 0) -> List[dict]:
        filt = {}
        if status:
            filt["status"] = status
        if category:
            filt["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
        if name_prefix:
            filt["name"] = {"$regex": f"^{re.escape(name_prefix)}", "$options": "i"}
        if supplier_id:
            filt["supplierId"] = supplier_id
        cursor = self.db[PRODUCTS].find(filt).sort("createdAt", -1).skip(skip).limit(limit)
        products = []
        for doc in cursor:
            product = to_public(doc)
            product["variants"] = self.get_variants(product["id"])
            products.append(summarize(product))
        return products

    def categories(self) -> List[str]:
        return sorted(c for c in self.db[PRODUCTS].distinct("category", {"status": "verified"}) if c)

    def new_arrivals(self, now: Optional[datetime] = None) -> List[dict]:
        """Verified products a customer has not been told about yet.

        A product is new while its `isNew` flag is set; older documents
        without the flag count as new for a day after they were created.
        """
        cutoff = (now or utcnow()) - NEW_ARRIVAL_WINDOW
        cursor = self.db[PRODUCTS].find({
            "status": "verified",
            "$or": [
                {"isNew": True},
                {"isNew": {"$exists": False}, "createdAt": {"$gte": cutoff}},
            ],
        }).sort("createdAt", -1)
        arrivals = []
        for doc in cursor:
            product = summarize(dict(to_public(doc), variants=self.get_variants(str(doc["_id"]))))
            images = product.get("images") or []
            arrivals.append({
                "id": product["id"],
                "name": product.get("name"),
                "category": product.get("category"),
                "price": product["minPrice"],
                "status": "In Stock" if product["totalStock"] > 0 else "Out of Stock",
                "imageUrl": images[0] if images else None,
                "createdAt": product.get("createdAt"),
            })
        return arrivals

    def mark_seen(self, product_id: str) -> bool:
        result = self.db[PRODUCTS].update_one(
            {"_id": object_id(product_id)}, {"$set": {"isNew": False}}
        )
        if not result.matched_count:
            raise NotFound("Product not found")
        return result.modified_count == 1
