"""
Post-delivery review flow.

A delivered order is reviewed one cart item at a time, in array order.
The order's `reviewIndex` points at the next item; it only moves forward
after that item's review has been written.
"""

import logging
from typing import List, Optional

from database import object_id, to_public, utcnow
from errors import NotFound, ReviewFlowHalted, ValidationFailed
from orders import ORDERS
from schemas import Review

logger = logging.getLogger(__name__)

REVIEWS = "reviews"


def resolve_product_id(item: dict) -> Optional[str]:
    if item.get("productId"):
        return item["productId"]
    item_id = item.get("id") or ""
    head = item_id.split("_")[0]
    return head or None


class ReviewFlow:
    def __init__(self, db):
        self.db = db

    def _order(self, order_id: str, email: str) -> dict:
        doc = self.db[ORDERS].find_one({"_id": object_id(order_id), "userEmail": email})
        if not doc:
            raise NotFound("Order not found")
        return doc

    def next_item(self, order_id: str, email: str) -> Optional[dict]:
        """The item awaiting review, or None once every item is reviewed."""
        order = self._order(order_id, email)
        if order.get("status") != "delivered":
            raise ValidationFailed("Only delivered orders can be reviewed")
        items = order.get("cartItems") or []
        index = order.get("reviewIndex", 0)
        if index >= len(items):
            return None
        item = items[index]
        product_id = resolve_product_id(item)
        if not product_id:
            raise ReviewFlowHalted("Could not find next product information for review.")
        return {
            "index": index,
            "remaining": len(items) - index,
            "item": {**item, "productId": product_id},
        }

    def submit(self, order_id: str, email: str, rating: int, review_text: str = "") -> dict:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailed("Please select a star rating.")
        current = self.next_item(order_id, email)
        if current is None:
            raise ValidationFailed("Every item in this order has been reviewed")
        order = self._order(order_id, email)
        index = current["index"]
        item = current["item"]

        # claim the slot first so a double submit cannot review the item twice
        claim = {"_id": order["_id"], "reviewIndex": index}
        if index == 0:
            claim = {"_id": order["_id"], "reviewIndex": {"$in": [0, None]}}
        claimed = self.db[ORDERS].find_one_and_update(claim, {"$set": {"reviewIndex": index + 1}})
        if claimed is None:
            raise ReviewFlowHalted("This item has already been reviewed")

        customer = order.get("customerDetails") or {}
        customer_name = " ".join(p for p in (customer.get("firstName"), customer.get("lastName")) if p) or "Anonymous"
        review = Review(
            productId=item["productId"],
            productName=item.get("name"),
            rating=rating,
            reviewText=(review_text or "").strip(),
            userEmail=email,
            customerName=customer_name,
            orderId=str(order["_id"]),
            itemIndex=index,
            orderData={
                "orderDate": order.get("createdAt"),
                "totalAmount": order.get("totalAmount"),
                "status": order.get("status"),
                "shippingAddress": order.get("shippingAddress"),
            },
            productData={
                "imageUrl": item.get("imageUrl"),
                "price": item.get("price"),
                "quantity": item.get("quantity"),
                "variantDetails": item.get("variantDetails"),
            },
        ).model_dump()
        review.update({"stars": rating, "createdAt": utcnow()})
        try:
            self.db[REVIEWS].insert_one(review)
        except Exception:
            self.db[ORDERS].update_one({"_id": order["_id"], "reviewIndex": index + 1},
                                       {"$set": {"reviewIndex": index}})
            raise
        logger.info("review for order %s item %d written", review["orderId"], index)

        result = {"review": to_public(review), "next": None, "halted": None}
        if index + 1 < len(order.get("cartItems") or []):
            try:
                result["next"] = self.next_item(order_id, email)
            except ReviewFlowHalted as e:
                logger.warning("review flow for order %s halted at item %d", result["review"]["orderId"], index + 1)
                result["halted"] = e.detail
        return result

    def for_product(self, product_id: str, limit: int = 50) -> dict:
        cursor = self.db[REVIEWS].find({"productId": product_id}).sort("createdAt", -1).limit(limit)
        reviews = [to_public(r) for r in cursor]
        average = round(sum(r["rating"] for r in reviews) / len(reviews), 1) if reviews else None
        return {"productId": product_id, "averageRating": average, "count": len(reviews), "reviews": reviews}

    def for_user(self, email: str) -> List[dict]:
        cursor = self.db[REVIEWS].find({"userEmail": email}).sort("createdAt", -1)
        return [to_public(r) for r in cursor]
