import json
import time
from typing import Dict, List, Optional

from pydantic import BaseModel

from catalog import CatalogReader, split_item_id
from database import object_id
from errors import AuthenticationFailed, NotFound, ValidationFailed
from schemas import CustomerDetails, ShippingAddress

ORDER_TITLE = "Marketplace Order"
HOSTED_METHODS = ("Chapa",)
OFFLINE_METHODS = ("COD",)
UNAVAILABLE_METHODS = ("ArifPay", "PayPal")


def cart_total(items: List[dict]) -> float:
    return round(sum(float(it["price"]) * int(it["quantity"]) for it in items), 2)


def generate_tx_ref(uid: str, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"TX-{now_ms}-{uid[:5]}"


class OrderDraft(BaseModel):
    total_amount: float
    tx_ref: str
    payment_method: str
    # string-serialized payload handed from checkout to payment to the writer
    params: Dict[str, str]


class CheckoutComposer:
    def __init__(self, catalog: CatalogReader, title: str = ORDER_TITLE):
        self.catalog = catalog
        self.title = title

    def compose(self, profile: Optional[dict], items: List[dict], shipping: ShippingAddress,
                customer: CustomerDetails, payment_method: Optional[str],
                agreed_to_refund_policy: bool) -> OrderDraft:
        if not agreed_to_refund_policy:
            raise ValidationFailed("Please read and agree to our refund policy before proceeding",
                                   title="Refund Policy Agreement Required")
        if not payment_method:
            raise ValidationFailed("Please select a payment method", title="Payment Method Required")
        if payment_method in UNAVAILABLE_METHODS:
            raise ValidationFailed(f"{payment_method} is not yet implemented.", title="Coming Soon")
        if payment_method not in HOSTED_METHODS + OFFLINE_METHODS:
            raise ValidationFailed(f"Unknown payment method: {payment_method}")
        if not profile:
            raise AuthenticationFailed("User not identified. Please log in again.")
        if not items:
            raise ValidationFailed("Your cart is empty.", title="Empty Cart")
        self.check_lines(items)
        if not shipping.address.strip():
            raise ValidationFailed("Please enter a shipping address", title="Address Required")

        display = (profile.get("name") or "").split(" ")
        first_name = customer.firstName.strip() or display[0]
        last_name = customer.lastName.strip() or (display[1] if len(display) > 1 else "")
        if not first_name or not last_name:
            raise ValidationFailed("Please enter your first and last name", title="Name Required")
        email = profile.get("email")
        if not email:
            raise ValidationFailed("Missing required payment information")

        customer = customer.model_copy(update={"firstName": first_name, "lastName": last_name})
        total = cart_total(items)
        tx_ref = generate_tx_ref(profile["uid"])
        params = {
            "firstName": first_name,
            "lastName": last_name,
            "email": email,
            "amount": f"{total:.2f}",
            "txRef": tx_ref,
            "title": self.title,
            "userId": profile["uid"],
            "userEmail": email,
            "cartItemsString": json.dumps(items),
            "shippingAddressString": shipping.model_dump_json(),
            "customerDetailsString": customer.model_dump_json(),
            "paymentMethod": payment_method,
        }
        return OrderDraft(total_amount=total, tx_ref=tx_ref, payment_method=payment_method, params=params)

    def check_lines(self, items: List[dict]):
        """Every line must name a variant that still exists, before anyone pays for it."""
        for item in items:
            label = item.get("name") or item.get("id")
            product_id, variant_id = split_item_id(item.get("id"))
            object_id(product_id)
            try:
                self.catalog.get_variant(product_id, variant_id)
            except NotFound:
                raise ValidationFailed(f"{label} is no longer available", title="Item Unavailable")
            if not isinstance(item.get("quantity"), int) or item["quantity"] < 1:
                raise ValidationFailed(f"Invalid quantity for {label}")
