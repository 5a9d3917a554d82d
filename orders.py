import json
import logging
from typing import List, Optional, Tuple

from pymongo.errors import DuplicateKeyError, PyMongoError

from cart import CartAccumulator
from catalog import PRODUCTS, VARIANTS, split_item_id
from database import object_id, to_public, utcnow
from errors import NotFound, PaymentVerificationFailed, PermissionDenied, ReferenceMismatch, ValidationFailed
from schemas import ORDER_STATUSES

logger = logging.getLogger(__name__)

ORDERS = "orders"

# who may move an order into which status
SUPPLIER_TRANSITIONS = {"accepted", "shipped", "cancelled"}
CUSTOMER_TRANSITIONS = {"cancelled"}


def _parse_json(value: str, name: str, default):
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        raise ValidationFailed(f"Invalid {name} data")


class OrderWriter:
    """Writes the permanent order record once a payment redirect checks out."""

    def __init__(self, db, gateway=None):
        self.db = db
        self.gateway = gateway

    def write(self, params: dict, tx_ref: str, redirect_status: Optional[str]) -> Tuple[dict, bool]:
        """Return (order, created). A repeat call for the same reference
        returns the stored order instead of writing a second one."""
        if not tx_ref or not params.get("userId") or not params.get("amount") or not params.get("cartItemsString"):
            raise ValidationFailed("Incomplete transaction data")
        if tx_ref != params.get("txRef"):
            raise ReferenceMismatch("Payment reference mismatch.")

        existing = self.db[ORDERS].find_one({"transactionRef": tx_ref})
        if existing:
            logger.info("order for %s already written", tx_ref)
            return to_public(existing), False

        if self.gateway is not None:
            gateway_response = self.gateway.verify(tx_ref)
        elif redirect_status != "success":
            raise PaymentVerificationFailed(redirect_status or "Payment was not completed")
        else:
            gateway_response = None

        doc = self._build(params, payment_status="success")
        if gateway_response:
            doc["gatewayResponse"] = {
                "amount": gateway_response.get("amount"),
                "currency": gateway_response.get("currency"),
                "status": gateway_response.get("status"),
                "email": gateway_response.get("email"),
                "first_name": gateway_response.get("first_name"),
                "last_name": gateway_response.get("last_name"),
                "verified_at": gateway_response.get("updated_at"),
            }
        return self._insert(doc)

    def place_cash_on_delivery(self, params: dict) -> dict:
        doc = self._build(params, payment_status="unpaid")
        order, _created = self._insert(doc)
        return order

    def _build(self, params: dict, payment_status: str) -> dict:
        items = _parse_json(params.get("cartItemsString"), "cart", [])
        if not isinstance(items, list) or not items:
            raise ValidationFailed("Invalid cart data")
        shipping = _parse_json(params.get("shippingAddressString"), "shipping address", {})
        customer = _parse_json(params.get("customerDetailsString"), "customer details", {})
        try:
            amount = float(params["amount"])
        except (KeyError, TypeError, ValueError):
            raise ValidationFailed("Invalid amount")

        suppliers = {}
        for item in items:
            product_id, variant_id = split_item_id(item.get("id"))
            object_id(variant_id)
            if not item.get("quantity") or item["quantity"] <= 0:
                raise ValidationFailed(f"Invalid data for item {item.get('name') or item.get('id')}")
            if product_id not in suppliers:
                product = self.db[PRODUCTS].find_one({"_id": object_id(product_id)}, {"supplierId": 1})
                if not product:
                    logger.warning("product %s not found, supplier unknown", product_id)
                suppliers[product_id] = product.get("supplierId") if product else None
            item["supplierId"] = suppliers[product_id]

        shipping.setdefault("coordinates", {"latitude": None, "longitude": None})
        return {
            "userId": params["userId"],
            "userEmail": params.get("userEmail"),
            "cartItems": items,
            "totalAmount": amount,
            "paymentMethod": params.get("paymentMethod"),
            "shippingAddress": shipping,
            "customerDetails": customer,
            "createdAt": utcnow(),
            "status": "pending",
            "paymentStatus": payment_status,
            "transactionRef": params.get("txRef"),
            "acceptedBy": None,
            "reviewIndex": 0,
        }

    def _insert(self, doc: dict) -> Tuple[dict, bool]:
        try:
            result = self.db[ORDERS].insert_one(doc)
        except DuplicateKeyError:
            existing = self.db[ORDERS].find_one({"transactionRef": doc["transactionRef"]})
            return to_public(existing), False
        logger.info("order %s written for %s", result.inserted_id, doc["transactionRef"])
        # the order stands from here on; follow-up writes only log their failures
        self._decrement_stock(doc["cartItems"])
        try:
            CartAccumulator(self.db).clear(doc["userId"])
        except PyMongoError:
            logger.exception("cart of %s not cleared after order %s", doc["userId"], result.inserted_id)
        return to_public(doc), True

    def _decrement_stock(self, items: List[dict]):
        for item in items:
            product_id, variant_id = split_item_id(item["id"])
            try:
                result = self.db[VARIANTS].update_one(
                    {"_id": object_id(variant_id), "productId": product_id, "stock": {"$gte": item["quantity"]}},
                    {"$inc": {"stock": -int(item["quantity"])}},
                )
            except PyMongoError:
                logger.exception("stock for %s not decremented", item["id"])
                continue
            if not result.matched_count:
                logger.warning("insufficient stock for %s, requested %s", item["id"], item["quantity"])


class OrderBook:
    def __init__(self, db):
        self.db = db

    def get(self, order_id: str) -> dict:
        doc = self.db[ORDERS].find_one({"_id": object_id(order_id)})
        if not doc:
            raise NotFound("Order not found")
        return to_public(doc)

    def get_for_user(self, order_id: str, email: str) -> dict:
        order = self.get(order_id)
        if order.get("userEmail") != email:
            raise NotFound("Order not found")
        return order

    def find(self, reference: str) -> Optional[dict]:
        """Look an order up by id or by transaction reference."""
        doc = None
        if len(reference) == 24:
            try:
                doc = self.db[ORDERS].find_one({"_id": object_id(reference)})
            except ValidationFailed:
                doc = None
        if doc is None:
            doc = self.db[ORDERS].find_one({"transactionRef": reference})
        return to_public(doc) if doc else None

    def list_for_user(self, email: str, limit: int = 50) -> List[dict]:
        cursor = self.db[ORDERS].find({"userEmail": email}).sort("createdAt", -1).limit(limit)
        return [to_public(o) for o in cursor]

    def list_for_supplier(self, supplier_id: str, status: Optional[str] = None, limit: int = 50) -> List[dict]:
        filt = {"cartItems.supplierId": supplier_id}
        if status:
            filt["status"] = status
        cursor = self.db[ORDERS].find(filt).sort("createdAt", -1).limit(limit)
        orders = []
        for o in cursor:
            order = to_public(o)
            order["cartItems"] = [it for it in order["cartItems"] if it.get("supplierId") == supplier_id]
            orders.append(order)
        return orders

    def accept_delivery(self, order_id: str, email: str) -> dict:
        order = self.get_for_user(order_id, email)
        if order["status"] in ("cancelled", "delivered"):
            raise ValidationFailed(f"Order is already {order['status']}")
        self.db[ORDERS].update_one(
            {"_id": object_id(order_id)},
            {"$set": {"status": "delivered", "acceptedBy": email, "deliveryAcceptedAt": utcnow()}},
        )
        logger.info("order %s marked delivered by %s", order_id, email)
        return self.get(order_id)

    def update_status(self, order_id: str, status: str, profile: dict) -> dict:
        if status not in ORDER_STATUSES:
            raise ValidationFailed(f"Unknown order status: {status}")
        order = self.get(order_id)
        role = profile.get("role")
        if role == "supplier":
            if status not in SUPPLIER_TRANSITIONS:
                raise ValidationFailed(f"Suppliers cannot set status {status}")
            if not any(it.get("supplierId") == profile["uid"] for it in order["cartItems"]):
                raise PermissionDenied("This order has none of your products")
        elif role == "customer":
            if status not in CUSTOMER_TRANSITIONS:
                raise ValidationFailed(f"Customers cannot set status {status}")
            if order.get("userEmail") != profile.get("email"):
                raise NotFound("Order not found")
            if order["status"] != "pending":
                raise ValidationFailed("Only pending orders can be cancelled")
        elif role == "delivery":
            if status not in ("shipped", "delivered"):
                raise ValidationFailed(f"Delivery staff cannot set status {status}")
        else:
            raise PermissionDenied("Not allowed")
        if order["status"] in ("cancelled", "delivered"):
            raise ValidationFailed(f"Order is already {order['status']}")
        self.db[ORDERS].update_one(
            {"_id": object_id(order_id)},
            {"$set": {"status": status, "updatedAt": utcnow(), "updatedBy": profile["uid"]}},
        )
        logger.info("order %s moved to %s by %s", order_id, status, profile["uid"])
        return self.get(order_id)


def format_summary(order: dict) -> str:
    lines = [f"Order ID: {order['id']}"]
    created = order.get("createdAt")
    if created:
        lines.append(f"Date: {created:%Y-%m-%d}" if hasattr(created, "strftime") else f"Date: {created}")
    lines.append(f"Status: {order.get('status') or 'Processing'}")
    total = order.get("totalAmount")
    lines.append(f"Total Amount: ETB {total:.2f}" if total is not None else "Total Amount: ETB N/A")
    items = order.get("cartItems") or []
    if items:
        lines.append("")
        lines.append("Items:")
        for i, item in enumerate(items, start=1):
            lines.append(f"{i}. {item['name']} (x{item['quantity']}) - ETB {item['price'] * item['quantity']:.2f}")
    address = order.get("shippingAddress")
    if address:
        lines.append("")
        lines.append(f"Shipping To: {address.get('address')}, {address.get('city')}, {address.get('country')}")
    return "\n".join(lines)
