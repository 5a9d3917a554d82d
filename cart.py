from typing import List

from catalog import CatalogReader
from checkout import cart_total
from database import utcnow
from errors import NotFound, ValidationFailed

CART = "cart"


class CartAccumulator:
    """One cart document per user id, holding an array of line items."""

    def __init__(self, db, catalog: CatalogReader = None):
        self.db = db
        self.catalog = catalog or CatalogReader(db)

    def get_items(self, user_id: str) -> List[dict]:
        doc = self.db[CART].find_one({"_id": user_id})
        return doc.get("items", []) if doc else []

    def get_cart(self, user_id: str) -> dict:
        items = self.get_items(user_id)
        return {"userId": user_id, "items": items, "total": cart_total(items)}

    def add_item(self, user_id: str, product_id: str, variant_id: str, quantity: int = 1) -> dict:
        if quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")
        product = self.catalog.get_product(product_id, with_variants=False)
        if product.get("status") != "verified":
            raise ValidationFailed("This product is not available")
        variant = self.catalog.get_variant(product_id, variant_id)
        stock = int(variant.get("stock") or 0)
        if stock <= 0:
            raise ValidationFailed(f"{product['name']} is out of stock", title="Out of Stock")

        item_id = f"{product_id}_{variant_id}"
        items = self.get_items(user_id)
        existing = next((it for it in items if it["id"] == item_id), None)
        if existing:
            if existing["quantity"] + quantity > stock:
                raise ValidationFailed(f"Only {stock} left in stock", title="Out of Stock")
            existing["quantity"] += quantity
            existing["stock"] = stock
        else:
            if quantity > stock:
                raise ValidationFailed(f"Only {stock} left in stock", title="Out of Stock")
            values = variant.get("values") or {}
            images = product.get("images") or []
            items.append({
                "id": item_id,
                "productId": product_id,
                "variantId": variant_id,
                "name": product["name"],
                "price": float(variant.get("price") or 0),
                "quantity": quantity,
                "imageUrl": variant.get("image") or (images[0] if images else None),
                "variantDetails": {attr: values.get(attr, "N/A") for attr in product.get("attributes") or []},
                "stock": stock,
            })
        self._save(user_id, items)
        return self.get_cart(user_id)

    def update_quantity(self, user_id: str, item_id: str, quantity: int) -> dict:
        items = self.get_items(user_id)
        item = next((it for it in items if it["id"] == item_id), None)
        if item is None:
            raise NotFound("Item is not in your cart")
        if quantity < 1:
            items.remove(item)
        else:
            if item.get("stock") is not None and quantity > item["stock"]:
                raise ValidationFailed(f"Only {item['stock']} left in stock", title="Out of Stock")
            item["quantity"] = quantity
        self._save(user_id, items)
        return self.get_cart(user_id)

    def remove_item(self, user_id: str, item_id: str) -> dict:
        return self.update_quantity(user_id, item_id, 0)

    def clear(self, user_id: str):
        self.db[CART].update_one({"_id": user_id}, {"$set": {"items": [], "updatedAt": utcnow()}})

    def _save(self, user_id: str, items: List[dict]):
        self.db[CART].update_one(
            {"_id": user_id},
            {"$set": {"items": items, "userId": user_id, "updatedAt": utcnow()},
             "$setOnInsert": {"createdAt": utcnow()}},
            upsert=True,
        )
