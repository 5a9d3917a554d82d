"""
Hosted payment page handshake.

The customer's web view loads an auto-submitting form that posts the order
to the gateway's hosted page. The gateway later redirects the web view to
this session's return URL with `status` and `tx_ref` query parameters.
The handshake watches for that redirect, checks the reference, and hands
over to the order writer. Sessions left idle for 15 minutes expire.
"""

import html
import logging
import os
import time
import uuid
from enum import Enum
from typing import Callable, NamedTuple, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from checkout import OrderDraft
from database import utcnow
from errors import (BackendError, NotFound, PaymentVerificationFailed, ReferenceMismatch,
                    SessionExpired)
from orders import OrderWriter

logger = logging.getLogger(__name__)

CHAPA_HOSTED_URL = os.getenv("CHAPA_HOSTED_URL", "https://api.chapa.co/v1/hosted/pay")
CHAPA_VERIFY_URL = os.getenv("CHAPA_VERIFY_URL", "https://api.chapa.co/v1/transaction/verify")
CHAPA_PUBLIC_KEY = os.getenv("CHAPA_PUBLIC_KEY", "")
CHAPA_SECRET_KEY = os.getenv("CHAPA_SECRET_KEY", "")
CHAPA_LOGO = "https://chapa.link/asset/images/chapa_swirl.svg"
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "ETB")
PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL", "http://localhost:8000/payments/return")
PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL", "")
VERIFICATION_TIMEOUT = 30.0
SESSION_TIMEOUT_SECONDS = 15 * 60

SESSIONS = "paymentsessions"

FORM_TEMPLATE = """<html>
<head>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>
    body {{ font-family: sans-serif; display: flex; justify-content: center; align-items: center; height: 100vh; margin: 0; background-color: #f0f2f5; flex-direction: column; text-align: center; }}
    p {{ color: #555; font-size: 1.1em; }}
  </style>
</head>
<body onload="document.forms[0].submit()">
  <form method="POST" action="{action}">
{fields}
  </form>
  <p>Redirecting to the payment gateway...</p>
</body>
</html>
"""


class HandshakeState(str, Enum):
    PENDING = "pending"
    PROCESSING_REDIRECT = "processing_redirect"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class RedirectResult(NamedTuple):
    status: Optional[str]
    tx_ref: str


class PaymentHandshake:
    def __init__(self, tx_ref: str, amount: str, return_url: str,
                 state: HandshakeState = HandshakeState.PENDING,
                 last_activity: Optional[float] = None,
                 timeout: float = SESSION_TIMEOUT_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.tx_ref = tx_ref
        self.amount = amount
        self.return_url = return_url
        self.state = HandshakeState(state)
        self.timeout = timeout
        self.clock = clock
        self.last_activity = last_activity if last_activity is not None else clock()

    def check_expiry(self):
        if self.state == HandshakeState.PENDING and self.clock() - self.last_activity >= self.timeout:
            self.state = HandshakeState.EXPIRED
        if self.state == HandshakeState.EXPIRED:
            raise SessionExpired("Your payment session has expired. Please try again.")

    def page_loaded(self):
        self.check_expiry()
        self.last_activity = self.clock()

    def on_navigation(self, url: str, loading: bool = False) -> Optional[RedirectResult]:
        if self.state != HandshakeState.PENDING:
            self.check_expiry()
            return None
        if not loading:
            self.page_loaded()
        else:
            self.check_expiry()
        if not url or not url.startswith(self.return_url):
            return None

        self.state = HandshakeState.PROCESSING_REDIRECT
        query = parse_qs(urlsplit(url).query)
        status = query.get("status", [None])[0]
        returned = query.get("tx_ref", [None])[0]
        if returned and returned != self.tx_ref:
            self.state = HandshakeState.FAILED
            logger.warning("tx_ref mismatch, expected %s got %s", self.tx_ref, returned)
            raise ReferenceMismatch("Payment reference mismatch.")
        return RedirectResult(status=status, tx_ref=self.tx_ref)

    def on_load_error(self, description: str):
        self.state = HandshakeState.FAILED
        raise BackendError(f"The payment page failed to load: {description}. Return to checkout to try again.",
                           title="Payment Page Error")

    def render_form(self, params: dict) -> str:
        fields = {
            "public_key": CHAPA_PUBLIC_KEY,
            "tx_ref": self.tx_ref,
            "amount": self.amount,
            "currency": PAYMENT_CURRENCY,
            "email": params.get("email", ""),
            "first_name": params.get("firstName", ""),
            "last_name": params.get("lastName", ""),
            "title": params.get("title", "Order Payment"),
            "description": f"Payment for {params.get('title', 'Order')}",
            "logo": CHAPA_LOGO,
            "callback_url": PAYMENT_CALLBACK_URL,
            "return_url": self.return_url,
        }
        inputs = "\n".join(
            f'    <input type="hidden" name="{name}" value="{html.escape(str(value), quote=True)}" />'
            for name, value in fields.items()
        )
        return FORM_TEMPLATE.format(action=html.escape(CHAPA_HOSTED_URL, quote=True), fields=inputs)


class ChapaClient:
    def __init__(self, secret_key: str = CHAPA_SECRET_KEY, verify_url: str = CHAPA_VERIFY_URL,
                 timeout: float = VERIFICATION_TIMEOUT):
        self.secret_key = secret_key
        self.verify_url = verify_url.rstrip("/")
        self.timeout = timeout

    def verify(self, tx_ref: str) -> dict:
        try:
            response = httpx.get(
                f"{self.verify_url}/{tx_ref}",
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BackendError(f"Could not reach the payment gateway: {e}")
        data = body.get("data") or {}
        if body.get("status") != "success" or data.get("status") != "success":
            raise PaymentVerificationFailed(data.get("status") or body.get("message") or "Payment verification failed")
        return data


class PaymentService:
    def __init__(self, db, writer: OrderWriter, return_url: str = PAYMENT_RETURN_URL,
                 clock: Callable[[], float] = time.time):
        self.db = db
        self.writer = writer
        self.return_url = return_url.rstrip("/")
        self.clock = clock

    def start(self, draft: OrderDraft) -> dict:
        session_id = uuid.uuid4().hex
        doc = {
            "_id": session_id,
            "txRef": draft.tx_ref,
            "amount": draft.params["amount"],
            "currency": PAYMENT_CURRENCY,
            "userId": draft.params["userId"],
            "state": HandshakeState.PENDING.value,
            "returnUrl": f"{self.return_url}/{session_id}",
            "params": draft.params,
            "lastActivity": self.clock(),
            "orderId": None,
            "error": None,
            "createdAt": utcnow(),
        }
        self.db[SESSIONS].insert_one(doc)
        logger.info("payment session %s started for %s", session_id, draft.tx_ref)
        return self.public(doc)

    def get(self, session_id: str) -> dict:
        doc = self._load(session_id)
        handshake = self._handshake(doc)
        try:
            handshake.check_expiry()
        except SessionExpired:
            self._expire(doc)
            doc["state"] = HandshakeState.EXPIRED.value
        return self.public(doc)

    def render_form(self, session_id: str) -> str:
        doc = self._load(session_id)
        handshake = self._handshake(doc)
        try:
            handshake.page_loaded()
        except SessionExpired:
            self._expire(doc)
            raise
        self._touch(doc, handshake)
        return handshake.render_form(doc["params"])

    def navigate(self, session_id: str, url: str, loading: bool = False) -> dict:
        doc = self._load(session_id)
        handshake = self._handshake(doc)
        try:
            redirect = handshake.on_navigation(url, loading)
        except SessionExpired:
            self._expire(doc)
            raise
        except ReferenceMismatch as e:
            self._fail(doc, e.detail)
            raise
        if redirect is None:
            if handshake.state == HandshakeState.PENDING:
                self._touch(doc, handshake)
            return self.public(self._load(session_id))
        return self._complete(doc, redirect)

    def handle_return(self, session_id: str, query: str) -> dict:
        doc = self._load(session_id)
        url = doc["returnUrl"] + (f"?{query}" if query else "")
        return self.navigate(session_id, url)

    def load_error(self, session_id: str, description: str):
        doc = self._load(session_id)
        handshake = self._handshake(doc)
        try:
            handshake.on_load_error(description)
        except BackendError as e:
            self._fail(doc, e.detail)
            raise

    def _complete(self, doc: dict, redirect: RedirectResult) -> dict:
        # only one redirect event may move the session out of pending
        claimed = self.db[SESSIONS].find_one_and_update(
            {"_id": doc["_id"], "state": HandshakeState.PENDING.value},
            {"$set": {"state": HandshakeState.PROCESSING_REDIRECT.value, "redirectStatus": redirect.status}},
            return_document=True,
        )
        if claimed is None:
            logger.info("duplicate redirect for session %s ignored", doc["_id"])
            return self.public(self._load(doc["_id"]))
        logger.info("payment session %s redirected with status %s", doc["_id"], redirect.status)
        try:
            order, _created = self.writer.write(doc["params"], redirect.tx_ref, redirect.status)
        except Exception as e:
            self._fail(doc, getattr(e, "detail", str(e)))
            raise
        updated = self.db[SESSIONS].find_one_and_update(
            {"_id": doc["_id"]},
            {"$set": {"state": HandshakeState.COMPLETED.value, "orderId": order["id"]}},
            return_document=True,
        )
        result = self.public(updated)
        result["order"] = order
        return result

    def _handshake(self, doc: dict) -> PaymentHandshake:
        return PaymentHandshake(
            tx_ref=doc["txRef"],
            amount=doc["amount"],
            return_url=doc["returnUrl"],
            state=doc["state"],
            last_activity=doc["lastActivity"],
            clock=self.clock,
        )

    def _load(self, session_id: str) -> dict:
        doc = self.db[SESSIONS].find_one({"_id": session_id})
        if not doc:
            raise NotFound("Payment session not found")
        return doc

    def _touch(self, doc: dict, handshake: PaymentHandshake):
        self.db[SESSIONS].update_one(
            {"_id": doc["_id"], "state": HandshakeState.PENDING.value},
            {"$set": {"lastActivity": handshake.last_activity}},
        )

    def _expire(self, doc: dict):
        result = self.db[SESSIONS].update_one(
            {"_id": doc["_id"], "state": HandshakeState.PENDING.value},
            {"$set": {"state": HandshakeState.EXPIRED.value, "error": "Session expired"}},
        )
        if result.modified_count:
            logger.info("payment session %s expired", doc["_id"])

    def _fail(self, doc: dict, reason: str):
        self.db[SESSIONS].update_one(
            {"_id": doc["_id"], "state": {"$in": [HandshakeState.PENDING.value,
                                                  HandshakeState.PROCESSING_REDIRECT.value]}},
            {"$set": {"state": HandshakeState.FAILED.value, "error": reason}},
        )
        logger.warning("payment session %s failed: %s", doc["_id"], reason)

    @staticmethod
    def public(doc: dict) -> dict:
        return {
            "id": doc["_id"],
            "userId": doc.get("userId"),
            "txRef": doc["txRef"],
            "amount": doc["amount"],
            "currency": doc["currency"],
            "state": doc["state"],
            "returnUrl": doc["returnUrl"],
            "orderId": doc.get("orderId"),
            "error": doc.get("error"),
        }
