import json
import re

import pytest

from catalog import CatalogReader
from checkout import CheckoutComposer, cart_total, generate_tx_ref
from errors import AuthenticationFailed, ValidationFailed
from schemas import CustomerDetails, ShippingAddress
from tests.conftest import seed_product

PROFILE = {"uid": "abcdef123456", "name": "Abebe Kebede", "email": "abebe@example.com"}
ITEMS = [
    {"id": "p1_v1", "name": "Widget", "price": 10.0, "quantity": 2},
    {"id": "p2_v1", "name": "Gizmo", "price": 2.5, "quantity": 3},
]


@pytest.fixture
def lines(db):
    widget = seed_product(db, name="Widget", price=10.0)
    gizmo = seed_product(db, name="Gizmo", price=2.5)
    return [
        {"id": "_".join(widget), "name": "Widget", "price": 10.0, "quantity": 2},
        {"id": "_".join(gizmo), "name": "Gizmo", "price": 2.5, "quantity": 3},
    ]


@pytest.fixture
def compose(db, lines):
    def run(**overrides):
        args = {
            "profile": PROFILE,
            "items": lines,
            "shipping": ShippingAddress(address="Bole Road", city="Addis Ababa"),
            "customer": CustomerDetails(),
            "payment_method": "Chapa",
            "agreed_to_refund_policy": True,
        }
        args.update(overrides)
        return CheckoutComposer(CatalogReader(db)).compose(**args)
    return run


def test_cart_total_sums_price_times_quantity():
    assert cart_total(ITEMS) == 27.5
    assert cart_total([{"price": 0.1, "quantity": 3}]) == 0.3
    assert cart_total([]) == 0


def test_generate_tx_ref():
    assert generate_tx_ref("abcdef123456", now_ms=1700000000000) == "TX-1700000000000-abcde"
    assert re.match(r"^TX-\d+-abcde$", generate_tx_ref("abcdef123456"))


def test_compose_builds_string_params(compose, lines):
    draft = compose()
    assert draft.total_amount == 27.5
    assert draft.payment_method == "Chapa"
    params = draft.params
    assert params["amount"] == "27.50"
    assert params["txRef"] == draft.tx_ref
    assert params["firstName"] == "Abebe"
    assert params["lastName"] == "Kebede"
    assert params["userId"] == PROFILE["uid"]
    assert json.loads(params["cartItemsString"]) == lines
    assert json.loads(params["shippingAddressString"])["city"] == "Addis Ababa"
    assert json.loads(params["customerDetailsString"])["firstName"] == "Abebe"
    assert all(isinstance(v, str) for v in params.values())


def test_customer_details_take_precedence_over_profile_name(compose):
    draft = compose(customer=CustomerDetails(firstName="Almaz", lastName="Tesfaye"))
    assert (draft.params["firstName"], draft.params["lastName"]) == ("Almaz", "Tesfaye")


@pytest.mark.parametrize("overrides,title", [
    ({"agreed_to_refund_policy": False}, "Refund Policy Agreement Required"),
    ({"payment_method": None}, "Payment Method Required"),
    ({"payment_method": "PayPal"}, "Coming Soon"),
    ({"items": []}, "Empty Cart"),
    ({"shipping": ShippingAddress(address="   ", city="Addis Ababa")}, "Address Required"),
    ({"profile": {**PROFILE, "name": "Abebe"}}, "Name Required"),
])
def test_compose_rejects_incomplete_checkout(compose, overrides, title):
    with pytest.raises(ValidationFailed) as exc:
        compose(**overrides)
    assert exc.value.title == title


def test_compose_requires_profile(compose):
    with pytest.raises(AuthenticationFailed):
        compose(profile=None)


def test_compose_rejects_unknown_method(compose):
    with pytest.raises(ValidationFailed):
        compose(payment_method="Bitcoin")


def test_compose_rejects_lines_that_do_not_name_a_variant(db, compose, lines):
    product_id = lines[0]["id"].split("_")[0]
    for bad in ("p1_v1", f"{product_id}_notanid", "no-separator"):
        with pytest.raises(ValidationFailed):
            compose(items=[{**lines[0], "id": bad}])


def test_compose_rejects_a_variant_that_is_gone(db, compose, lines):
    product_id, variant_id = lines[1]["id"].split("_")
    db["variants"].delete_one({"productId": product_id})
    with pytest.raises(ValidationFailed) as exc:
        compose()
    assert exc.value.title == "Item Unavailable"
    assert "Gizmo" in exc.value.detail


@pytest.mark.parametrize("quantity", [0, -1, "2", None])
def test_compose_rejects_bad_quantities(compose, lines, quantity):
    with pytest.raises(ValidationFailed):
        compose(items=[{**lines[0], "quantity": quantity}])
