import asyncio
import base64
import io
import logging
import os
import sys
from contextlib import asynccontextmanager, suppress
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from auth import SessionProvider, login, register_account, request_password_reset, reset_password
from cart import CartAccumulator
from catalog import CatalogReader
from chat import ChatChannel, DirectChat, SupportDesk, customer_thread, supplier_thread, support_thread
from checkout import CheckoutComposer
from connectivity import ConnectivityMonitor
from database import create_document, db, ensure_indexes, get_documents, to_public
from errors import MarketplaceError, NotFound, ValidationFailed
from favorites import Favorites
from media import MEDIA_TARGETS, MediaHost
from orders import OrderBook, OrderWriter
from payments import CHAPA_SECRET_KEY, ChapaClient, PaymentService
from realtime import SubscriptionManager
from reviews import ReviewFlow
from schemas import (FEEDBACK_CATEGORIES, PRODUCT_STATUSES, CartLine, CustomerDetails, Feedback, ProductSubmission,
                     Promotion, ShippingAddress)
from suppliers import ProductSubmitter, SupplierInbox
from validations import password_strength, password_strength_label, unmet_password_requirements

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
STREAM_BACKLOG = int(os.getenv("STREAM_BACKLOG", 100))

logger = logging.getLogger("marketplace")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

subscriptions = SubscriptionManager()


def setup_logging():
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL)


def _ping():
    if db is None:
        raise RuntimeError("Database not configured")
    db.command("ping")


connectivity = ConnectivityMonitor(_ping, subscriptions)


def seed_promotions(database):
    if database["promotions"].count_documents({}) > 0:
        return
    create_document(database, "promotions", Promotion(
        type="text",
        text="Special Offer! Get 20% off on all products this week!",
        active=True,
    ))


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    poller = None
    if db is not None:
        ensure_indexes(db)
        seed_promotions(db)
        poller = asyncio.create_task(connectivity.run())
    yield
    if poller:
        poller.cancel()
        with suppress(asyncio.CancelledError):
            await poller


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"title": exc.title, "detail": exc.detail})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=502, content={"title": "Service Error", "detail": str(exc)[:200]})


# Dependencies

def get_db():
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def get_media() -> MediaHost:
    return MediaHost()


def get_gateway() -> Optional[ChapaClient]:
    return ChapaClient() if CHAPA_SECRET_KEY else None


def get_session_provider(database=Depends(get_db)) -> SessionProvider:
    return SessionProvider(database, subscriptions)


def get_current_user(token: str = Depends(oauth2_scheme), sessions=Depends(get_session_provider)):
    return sessions.get_current_profile(token)


def require_supplier(user=Depends(get_current_user)):
    if user["role"] != "supplier":
        raise HTTPException(status_code=403, detail="Supplier access required")
    return user


def get_payments(database=Depends(get_db), gateway=Depends(get_gateway)) -> PaymentService:
    return PaymentService(database, OrderWriter(database, gateway))


def get_chat(database=Depends(get_db)) -> ChatChannel:
    return ChatChannel(database, subscriptions)


# Health

@app.get("/")
def read_root():
    return {"message": "Marketplace API ready"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response
    response["database_name"] = db.name
    if connectivity.check():
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    else:
        response["database"] = f"❌ Error: {connectivity.last_error}"
    return response


# Auth & profile

class RegisterBody(BaseModel):
    name: str
    email: str
    password: str
    role: str = "customer"
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None
    profile_picture: Optional[str] = Field(None, description="Hosted URL or base64 data URI")
    business_name: Optional[str] = None
    trade_type: Optional[str] = None
    trade_license: Optional[str] = Field(None, description="Hosted URL or base64 data URI")


class LoginBody(BaseModel):
    email: str
    password: str


class ResetRequest(BaseModel):
    email: str = ""


class ResetConfirm(BaseModel):
    token: str
    new_password: str


class PasswordCheck(BaseModel):
    password: str = ""


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None
    profilePicture: Optional[str] = None
    businessName: Optional[str] = None
    tradeType: Optional[str] = None


@app.post("/auth/register")
async def register(body: RegisterBody, database=Depends(get_db), media: MediaHost = Depends(get_media)):
    if body.role == "supplier" and not body.trade_license:
        raise ValidationFailed("A trade license is required for suppliers")
    picture = await media.store("profile_picture", body.profile_picture, "profile.jpg") if body.profile_picture else None
    license_url = await media.store("trade_license", body.trade_license, "license.jpg") if body.trade_license else None
    return await run_in_threadpool(
        register_account,
        database,
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        phone=body.phone,
        address=body.address,
        location=body.location,
        profilePicture=picture,
        businessName=body.business_name,
        tradeType=body.trade_type,
        tradeLicense=license_url,
    )


@app.post("/auth/login")
def sign_in(body: LoginBody, database=Depends(get_db)):
    return login(database, body.email, body.password)


@app.post("/auth/password-reset")
def forgot_password(body: ResetRequest, database=Depends(get_db)):
    request_password_reset(database, body.email)
    return {"message": "Password reset instructions have been sent to your email."}


@app.post("/auth/password-reset/confirm")
def confirm_password_reset(body: ResetConfirm, database=Depends(get_db)):
    return reset_password(database, body.token, body.new_password)


@app.post("/auth/password-strength")
def check_password_strength(body: PasswordCheck):
    strength = password_strength(body.password)
    return {
        "strength": strength,
        "label": password_strength_label(strength),
        "unmet": unmet_password_requirements(body.password),
    }


@app.get("/profile")
def read_profile(user=Depends(get_current_user)):
    return user


@app.patch("/profile")
def edit_profile(body: ProfileUpdate, user=Depends(get_current_user), sessions=Depends(get_session_provider)):
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise ValidationFailed("Nothing to update")
    return sessions.update_profile(user["uid"], changes)


# Catalog

@app.get("/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None, limit: int = 50, skip: int = 0,
                  database=Depends(get_db)):
    return CatalogReader(database).list_products(category=category, name_prefix=q, limit=limit, skip=skip)


@app.get("/products/categories")
def list_categories(database=Depends(get_db)):
    return CatalogReader(database).categories()


@app.get("/products/{product_id}")
def get_product(product_id: str, database=Depends(get_db)):
    product = CatalogReader(database).get_product(product_id)
    if product.get("status") != "verified":
        raise NotFound("Product not found")
    return product


@app.get("/products/{product_id}/reviews")
def product_reviews(product_id: str, database=Depends(get_db)):
    return ReviewFlow(database).for_product(product_id)


# Favorites & new arrivals

class FavoriteAdd(BaseModel):
    product_id: str


@app.get("/favorites")
def list_favorites(user=Depends(get_current_user), database=Depends(get_db)):
    return Favorites(database).list_saved(user["uid"])


@app.post("/favorites")
def add_favorite(body: FavoriteAdd, user=Depends(get_current_user), database=Depends(get_db)):
    return Favorites(database).add(user["uid"], body.product_id)


@app.delete("/favorites/{product_id}")
def remove_favorite(product_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    if not Favorites(database).remove(user["uid"], product_id):
        raise NotFound("This product is not in your favorites")
    return {"removed": product_id}


@app.get("/notifications")
def new_arrivals(user=Depends(get_current_user), database=Depends(get_db)):
    return CatalogReader(database).new_arrivals()


@app.post("/notifications/{product_id}/seen")
def mark_arrival_seen(product_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    return {"updated": CatalogReader(database).mark_seen(product_id)}


# Cart

class CartAdd(BaseModel):
    product_id: str
    variant_id: str
    quantity: int = 1


class CartQuantity(BaseModel):
    quantity: int


@app.get("/cart")
def get_cart(user=Depends(get_current_user), database=Depends(get_db)):
    return CartAccumulator(database).get_cart(user["uid"])


@app.post("/cart/items")
def add_to_cart(body: CartAdd, user=Depends(get_current_user), database=Depends(get_db)):
    return CartAccumulator(database).add_item(user["uid"], body.product_id, body.variant_id, body.quantity)


@app.patch("/cart/items/{item_id}")
def change_quantity(item_id: str, body: CartQuantity, user=Depends(get_current_user), database=Depends(get_db)):
    return CartAccumulator(database).update_quantity(user["uid"], item_id, body.quantity)


@app.delete("/cart/items/{item_id}")
def remove_from_cart(item_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    return CartAccumulator(database).remove_item(user["uid"], item_id)


# Checkout & payment

class CheckoutRequest(BaseModel):
    shipping_address: ShippingAddress
    customer_details: CustomerDetails = Field(default_factory=CustomerDetails)
    payment_method: Optional[str] = None
    agreed_to_refund_policy: bool = False
    # the client's own cart; the stored cart is used when omitted
    items: Optional[List[CartLine]] = None


class NavigationEvent(BaseModel):
    url: str
    loading: bool = False


class LoadError(BaseModel):
    description: str = "Unknown error"


@app.post("/checkout")
def checkout(payload: CheckoutRequest, user=Depends(get_current_user), database=Depends(get_db),
             payments: PaymentService = Depends(get_payments)):
    if payload.items is not None:
        items = [i.model_dump() for i in payload.items]
    else:
        items = CartAccumulator(database).get_items(user["uid"])
    draft = CheckoutComposer(CatalogReader(database)).compose(
        user, items, payload.shipping_address, payload.customer_details,
        payload.payment_method, payload.agreed_to_refund_policy,
    )
    result = {"totalAmount": draft.total_amount, "txRef": draft.tx_ref, "paymentMethod": draft.payment_method}
    if draft.payment_method == "COD":
        result["order"] = payments.writer.place_cash_on_delivery(draft.params)
        return result
    session = payments.start(draft)
    result["session"] = session
    result["formUrl"] = f"/payments/sessions/{session['id']}/form"
    return result


def _own_session(payments: PaymentService, session_id: str, user: dict) -> dict:
    session = payments.get(session_id)
    if session["userId"] != user["uid"]:
        raise NotFound("Payment session not found")
    return session


@app.get("/payments/sessions/{session_id}")
def payment_session(session_id: str, user=Depends(get_current_user), payments: PaymentService = Depends(get_payments)):
    return _own_session(payments, session_id, user)


@app.get("/payments/sessions/{session_id}/form", response_class=HTMLResponse, name="payment_form")
def payment_form(session_id: str, payments: PaymentService = Depends(get_payments)):
    return payments.render_form(session_id)


@app.post("/payments/sessions/{session_id}/navigation")
def payment_navigation(session_id: str, event: NavigationEvent, user=Depends(get_current_user),
                       payments: PaymentService = Depends(get_payments)):
    _own_session(payments, session_id, user)
    return payments.navigate(session_id, event.url, event.loading)


@app.post("/payments/sessions/{session_id}/load-error")
def payment_load_error(session_id: str, body: LoadError, user=Depends(get_current_user),
                       payments: PaymentService = Depends(get_payments)):
    _own_session(payments, session_id, user)
    payments.load_error(session_id, body.description)


@app.get("/payments/return/{session_id}")
def payment_return(session_id: str, request: Request, payments: PaymentService = Depends(get_payments)):
    return payments.handle_return(session_id, request.url.query)


@app.get("/payments/sessions/{session_id}/qr")
def payment_qr(session_id: str, request: Request, user=Depends(get_current_user),
               payments: PaymentService = Depends(get_payments)):
    import qrcode
    _own_session(payments, session_id, user)

    pay_url = str(request.url_for("payment_form", session_id=session_id))
    img = qrcode.make(pay_url)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    b64 = base64.b64encode(buf.getvalue()).decode("utf-8")

    return {"qr": f"data:image/png;base64,{b64}", "pay_url": pay_url}


# Orders & reviews

class StatusChange(BaseModel):
    status: str


class ReviewBody(BaseModel):
    rating: int = Field(0, description="1-5 stars; 0 means none selected")
    review_text: str = ""


@app.get("/orders")
def my_orders(user=Depends(get_current_user), database=Depends(get_db)):
    return OrderBook(database).list_for_user(user["email"])


@app.get("/orders/{order_id}")
def my_order(order_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    return OrderBook(database).get_for_user(order_id, user["email"])


@app.post("/orders/{order_id}/accept")
def accept_order(order_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    return OrderBook(database).accept_delivery(order_id, user["email"])


@app.patch("/orders/{order_id}/status")
def change_order_status(order_id: str, body: StatusChange, user=Depends(get_current_user), database=Depends(get_db)):
    return OrderBook(database).update_status(order_id, body.status, user)


@app.get("/orders/{order_id}/reviews/next")
def next_review(order_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    current = ReviewFlow(database).next_item(order_id, user["email"])
    return {"done": current is None, "next": current}


@app.post("/orders/{order_id}/reviews")
def submit_review(order_id: str, body: ReviewBody, user=Depends(get_current_user), database=Depends(get_db)):
    return ReviewFlow(database).submit(order_id, user["email"], body.rating, body.review_text)


@app.get("/reviews")
def my_reviews(user=Depends(get_current_user), database=Depends(get_db)):
    return ReviewFlow(database).for_user(user["email"])


# Supplier

class DirectMessage(BaseModel):
    text: str = ""
    file: Optional[str] = Field(None, description="Base64 data URI attachment")
    file_name: Optional[str] = None


@app.post("/supplier/products")
async def submit_product(submission: ProductSubmission, user=Depends(require_supplier), database=Depends(get_db),
                         media: MediaHost = Depends(get_media)):
    submitter = ProductSubmitter(database, media)
    return await submitter.submit(
        user, submission,
        on_progress=lambda pct: logger.debug("submission %s at %d%%", submission.name, pct),
    )


@app.get("/supplier/products")
def supplier_products(status: Optional[str] = None, user=Depends(require_supplier), database=Depends(get_db)):
    if status is not None and status not in PRODUCT_STATUSES:
        raise ValidationFailed(f"Unknown product status: {status}")
    return CatalogReader(database).list_products(status=status, supplier_id=user["uid"])


@app.get("/supplier/orders")
def supplier_orders(status: Optional[str] = None, user=Depends(require_supplier), database=Depends(get_db)):
    return OrderBook(database).list_for_supplier(user["uid"], status)


@app.get("/supplier/notifications")
def supplier_notifications(status: Optional[str] = None, user=Depends(require_supplier), database=Depends(get_db)):
    inbox = SupplierInbox(database)
    return {
        "unread": inbox.unread_count(user["uid"]),
        "moderation": inbox.notifications(user["uid"], status),
        "orders": inbox.new_orders(user["uid"]),
    }


@app.post("/supplier/notifications/read")
def supplier_notifications_read(user=Depends(require_supplier), database=Depends(get_db)):
    return {"updated": SupplierInbox(database).mark_read(user["uid"])}


@app.get("/supplier/chat")
def supplier_chat(user=Depends(require_supplier), channel: ChatChannel = Depends(get_chat),
                  media: MediaHost = Depends(get_media)):
    return DirectChat(channel, media).open(supplier_thread(user["uid"]))


@app.post("/supplier/chat")
async def supplier_chat_send(body: DirectMessage, user=Depends(require_supplier),
                             channel: ChatChannel = Depends(get_chat), media: MediaHost = Depends(get_media)):
    return await DirectChat(channel, media).send(
        supplier_thread(user["uid"]), "supplier", user, body.text, body.file, body.file_name,
    )


# Customer service

class SupportMessage(BaseModel):
    text: str


@app.get("/chat/support")
def support_history(user=Depends(get_current_user), channel: ChatChannel = Depends(get_chat),
                    database=Depends(get_db)):
    return SupportDesk(channel, OrderBook(database)).history(user["email"])


@app.post("/chat/support")
def support_send(body: SupportMessage, user=Depends(get_current_user), channel: ChatChannel = Depends(get_chat),
                 database=Depends(get_db)):
    return SupportDesk(channel, OrderBook(database)).send(user["email"], body.text)


@app.get("/chat/messages")
def customer_chat(user=Depends(get_current_user), channel: ChatChannel = Depends(get_chat),
                  media: MediaHost = Depends(get_media)):
    return DirectChat(channel, media).open(customer_thread(user["uid"]))


@app.post("/chat/messages")
async def customer_chat_send(body: DirectMessage, user=Depends(get_current_user),
                             channel: ChatChannel = Depends(get_chat), media: MediaHost = Depends(get_media)):
    return await DirectChat(channel, media).send(
        customer_thread(user["uid"]), "user", user, body.text, body.file, body.file_name,
    )


# Feedback, promotions, settings, media

class FeedbackIn(BaseModel):
    title: str = ""
    feedback: str = ""
    rating: Optional[int] = None
    category: str = "general"
    image: Optional[str] = Field(None, description="Hosted URL or base64 data URI")


class MediaUpload(BaseModel):
    data: str = Field(..., description="Base64 data URI")
    filename: str = "upload"


@app.post("/feedback")
async def give_feedback(body: FeedbackIn, user=Depends(get_current_user), database=Depends(get_db),
                        media: MediaHost = Depends(get_media)):
    if not body.title.strip() or not body.feedback.strip():
        raise ValidationFailed("Please fill in the title and your feedback")
    if not body.rating or not 1 <= body.rating <= 5:
        raise ValidationFailed("Please provide a rating for your experience", title="Rating Required")
    if body.category not in FEEDBACK_CATEGORIES:
        raise ValidationFailed(f"Unknown category: {body.category}")
    image_url = await media.store("feedback_image", body.image, "feedback.jpg") if body.image else None
    feedback = Feedback(
        userId=user["uid"],
        userEmail=user["email"],
        title=body.title.strip(),
        feedback=body.feedback.strip(),
        rating=body.rating,
        category=body.category,
        imageUrl=image_url,
    )
    return {"id": await run_in_threadpool(create_document, database, "feedback", feedback)}


@app.get("/feedback")
def my_feedback(user=Depends(get_current_user), database=Depends(get_db)):
    return get_documents(database, "feedback", {"userId": user["uid"]}, sort=[("createdAt", -1)])


@app.get("/promotions")
def list_promotions(database=Depends(get_db)):
    return get_documents(database, "promotions", {"active": True}, sort=[("createdAt", -1)])


@app.get("/settings/{key}")
def read_setting(key: str, database=Depends(get_db)):
    doc = database["settings"].find_one({"_id": key})
    if not doc:
        raise NotFound(f"No {key} document")
    return to_public(doc)


@app.post("/media/{category}")
async def upload_media(category: str, body: MediaUpload, user=Depends(get_current_user),
                       media: MediaHost = Depends(get_media)):
    if category not in MEDIA_TARGETS:
        raise NotFound(f"Unknown media category: {category}")
    return {"url": await media.store(category, body.data, body.filename)}


# Realtime

def _offer(queue: asyncio.Queue, payload):
    """Queue an update for a socket, dropping the oldest one when the client lags behind."""
    if queue.full():
        queue.get_nowait()
        logger.warning("listener backlog full; dropped oldest update")
    queue.put_nowait(payload)


async def _stream(websocket: WebSocket, topic: str, backlog: list):
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=STREAM_BACKLOG)
    with subscriptions.scope() as scope:
        scope.subscribe(topic, lambda _topic, payload: loop.call_soon_threadsafe(_offer, queue, payload))
        for item in backlog:
            await websocket.send_json(jsonable_encoder(item))
        receive = asyncio.ensure_future(websocket.receive_text())
        update = asyncio.ensure_future(queue.get())
        try:
            while True:
                done, _ = await asyncio.wait({receive, update}, return_when=asyncio.FIRST_COMPLETED)
                if update in done:
                    await websocket.send_json(jsonable_encoder(update.result()))
                    update = asyncio.ensure_future(queue.get())
                if receive in done:
                    # clients only send keep-alives; this raises once they leave
                    receive.result()
                    receive = asyncio.ensure_future(websocket.receive_text())
        except WebSocketDisconnect:
            logger.debug("listener on %s detached", topic)
        finally:
            receive.cancel()
            update.cancel()


async def _authenticate(websocket: WebSocket, token: str, database) -> Optional[dict]:
    try:
        return await run_in_threadpool(SessionProvider(database, subscriptions).get_current_profile, token)
    except MarketplaceError as e:
        await websocket.close(code=1008, reason=e.detail)
        return None


@app.websocket("/ws/profile")
async def profile_stream(websocket: WebSocket, token: str, database=Depends(get_db)):
    user = await _authenticate(websocket, token, database)
    if user is None:
        return
    await websocket.accept()
    await _stream(websocket, SessionProvider.topic(user["uid"]), [user])


@app.websocket("/ws/support")
async def support_stream(websocket: WebSocket, token: str, database=Depends(get_db)):
    user = await _authenticate(websocket, token, database)
    if user is None:
        return
    await websocket.accept()
    desk = SupportDesk(ChatChannel(database, subscriptions), OrderBook(database))
    history = await run_in_threadpool(desk.history, user["email"])
    await _stream(websocket, support_thread(user["email"]), history)


async def _direct_stream(websocket: WebSocket, path: str, database):
    await websocket.accept()
    history = await run_in_threadpool(ChatChannel(database, subscriptions).history, path)
    await _stream(websocket, path, history)


@app.websocket("/ws/chat")
async def customer_chat_stream(websocket: WebSocket, token: str, database=Depends(get_db)):
    user = await _authenticate(websocket, token, database)
    if user is None:
        return
    await _direct_stream(websocket, customer_thread(user["uid"]), database)


@app.websocket("/ws/supplier/chat")
async def supplier_chat_stream(websocket: WebSocket, token: str, database=Depends(get_db)):
    user = await _authenticate(websocket, token, database)
    if user is None:
        return
    if user["role"] != "supplier":
        await websocket.close(code=1008, reason="Supplier access required")
        return
    await _direct_stream(websocket, supplier_thread(user["uid"]), database)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
