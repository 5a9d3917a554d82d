"""
Supplier-side product submission and notifications.

A product declares an open set of attributes; every variant gives one
value per attribute, a price, a stock count and exactly one image. The
product document is written first, then all variants upload their image
and write their document concurrently.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from bson import ObjectId

from catalog import PRODUCTS, VARIANTS
from database import to_public, utcnow
from errors import ValidationFailed
from media import MediaHost, is_hosted
from schemas import Product, ProductSubmission, Variant

logger = logging.getLogger(__name__)

MODERATED = ("verified", "rejected")


def validate_submission(submission: ProductSubmission) -> List[str]:
    problems = []
    for field in ("name", "description", "category"):
        if not (getattr(submission, field) or "").strip():
            problems.append(f"Product {field} is required")
    attributes = [a.strip() for a in submission.attributes]
    if any(not a for a in attributes):
        problems.append("Attribute names cannot be empty")
    if len(set(attributes)) != len(attributes):
        problems.append("Attribute names must be unique")
    if not submission.variants:
        problems.append("Add at least one variant")
    for n, variant in enumerate(submission.variants, start=1):
        for attr in attributes:
            if not (variant.values.get(attr) or "").strip():
                problems.append(f"Variant {n} is missing a value for {attr}")
        if variant.price is None or variant.price <= 0:
            problems.append(f"Variant {n} needs a price")
        if variant.stock is None or variant.stock < 0:
            problems.append(f"Variant {n} needs a stock count")
        if not variant.image:
            problems.append(f"Variant {n} needs an image")
    return problems


class UploadProgress:
    """Percent of finished steps: one per image plus one per variant document."""

    def __init__(self, total: int, callback: Optional[Callable[[int], None]] = None):
        self.total = max(total, 1)
        self.done = 0
        self.callback = callback

    @property
    def percent(self) -> int:
        return round(self.done * 100 / self.total)

    def advance(self):
        self.done += 1
        if self.callback:
            self.callback(self.percent)


class ProductSubmitter:
    def __init__(self, db, media: MediaHost):
        self.db = db
        self.media = media

    async def submit(self, supplier: dict, submission: ProductSubmission,
                     on_progress: Optional[Callable[[int], None]] = None) -> dict:
        problems = validate_submission(submission)
        if problems:
            raise ValidationFailed("; ".join(problems), title="Incomplete Product")

        uploads = [img for img in submission.images if not is_hosted(img)]
        uploads += [v.image for v in submission.variants if not is_hosted(v.image)]
        if submission.video and not is_hosted(submission.video):
            uploads.append(submission.video)
        progress = UploadProgress(len(uploads) + len(submission.variants), on_progress)

        images = []
        for n, image in enumerate(submission.images):
            images.append(await self._store("product_image", image, f"product_{n}.jpg", progress))
        video = ""
        if submission.video:
            video = await self._store("product_video", submission.video, "product_video.mp4", progress)

        product_id = ObjectId()
        attributes = [a.strip() for a in submission.attributes]
        product = Product(
            supplierId=supplier["uid"],
            supplierEmail=supplier.get("email"),
            name=submission.name.strip(),
            description=submission.description.strip(),
            category=submission.category.strip(),
            brand=submission.brand,
            images=images,
            video=video,
            attributes=attributes,
        ).model_dump()
        product.update({"_id": product_id, "createdAt": utcnow(), "updatedAt": utcnow()})
        await asyncio.to_thread(self.db[PRODUCTS].insert_one, product)

        async def add_variant(n, variant):
            image = await self._store("product_image", variant.image, f"variant_{n}.jpg", progress)
            doc = Variant(
                productId=str(product_id),
                values={attr: variant.values[attr].strip() for attr in attributes},
                price=float(variant.price),
                stock=int(variant.stock),
                image=image,
            ).model_dump()
            doc["createdAt"] = utcnow()
            await asyncio.to_thread(self.db[VARIANTS].insert_one, doc)
            progress.advance()
            return to_public(doc)

        variants = await asyncio.gather(
            *(add_variant(n, v) for n, v in enumerate(submission.variants)),
            return_exceptions=True,
        )
        failures = [v for v in variants if isinstance(v, BaseException)]
        if failures:
            await asyncio.to_thread(self.db[VARIANTS].delete_many, {"productId": str(product_id)})
            await asyncio.to_thread(self.db[PRODUCTS].delete_one, {"_id": product_id})
            logger.error("submission of %s rolled back after %d failed variants", submission.name, len(failures))
            raise failures[0]

        logger.info("supplier %s submitted product %s with %d variants", supplier["uid"], product_id, len(variants))
        result = to_public(product)
        result["variants"] = list(variants)
        result["progress"] = progress.percent
        return result

    async def _store(self, category: str, value: str, filename: str, progress: UploadProgress) -> str:
        if is_hosted(value):
            return value
        url = await self.media.store(category, value, filename)
        progress.advance()
        return url


class SupplierInbox:
    """Moderation decisions and incoming orders for one supplier."""

    def __init__(self, db):
        self.db = db

    def notifications(self, supplier_id: str, status: Optional[str] = None) -> List[dict]:
        statuses = [status] if status else list(MODERATED)
        cursor = self.db[PRODUCTS].find(
            {"supplierId": supplier_id, "status": {"$in": statuses}}
        ).sort("updatedAt", -1)
        notes = []
        for doc in cursor:
            product = to_public(doc)
            notes.append({
                "type": "moderation",
                "productId": product["id"],
                "name": product.get("name"),
                "status": product["status"],
                "reason": product.get("rejectionReason"),
                "isRead": product.get("isRead", False),
                "variantCount": self.db[VARIANTS].count_documents({"productId": product["id"]}),
                "updatedAt": product.get("updatedAt"),
            })
        return notes

    def unread_count(self, supplier_id: str) -> int:
        return self.db[PRODUCTS].count_documents(
            {"supplierId": supplier_id, "isRead": False, "status": {"$in": list(MODERATED)}}
        )

    def mark_read(self, supplier_id: str) -> int:
        result = self.db[PRODUCTS].update_many(
            {"supplierId": supplier_id, "isRead": False, "status": {"$in": list(MODERATED)}},
            {"$set": {"isRead": True}},
        )
        return result.modified_count

    def new_orders(self, supplier_id: str, since=None) -> List[dict]:
        filt = {"cartItems.supplierId": supplier_id, "status": "pending"}
        if since is not None:
            filt["createdAt"] = {"$gt": since}
        cursor = self.db["orders"].find(filt).sort("createdAt", -1)
        return [
            {
                "type": "order",
                "orderId": str(o["_id"]),
                "items": [it for it in o.get("cartItems", []) if it.get("supplierId") == supplier_id],
                "createdAt": o.get("createdAt"),
            }
            for o in cursor
        ]
