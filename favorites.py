from typing import List

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from catalog import PRODUCTS, CatalogReader
from database import to_public, utcnow
from schemas import Favorite

FAVORITES = "favorite"


class Favorites:
    """Products a customer saved for later, one document per (userId, productId)."""

    def __init__(self, db, catalog: CatalogReader = None):
        self.db = db
        self.catalog = catalog or CatalogReader(db)

    def add(self, user_id: str, product_id: str) -> dict:
        product = self.catalog.get_product(product_id, with_variants=False)
        doc = Favorite(userId=user_id, productId=product["id"]).model_dump()
        doc["createdAt"] = utcnow()
        try:
            self.db[FAVORITES].insert_one(doc)
        except DuplicateKeyError:
            # already saved
            pass
        return {"productId": product["id"], "name": product.get("name")}

    def remove(self, user_id: str, product_id: str) -> bool:
        result = self.db[FAVORITES].delete_one({"userId": user_id, "productId": product_id})
        return result.deleted_count == 1

    def list_saved(self, user_id: str) -> dict:
        ids = [f["productId"] for f in self.db[FAVORITES].find({"userId": user_id}).sort("createdAt", -1)]
        docs = {
            str(d["_id"]): d
            for d in self.db[PRODUCTS].find({"_id": {"$in": [ObjectId(i) for i in ids if ObjectId.is_valid(i)]}})
        }
        products = [to_public(docs[i]) for i in ids if i in docs]
        categories: List[str] = []
        for product in products:
            if product.get("category") and product["category"] not in categories:
                categories.append(product["category"])
        return {"products": products, "categories": ["All"] + categories}
