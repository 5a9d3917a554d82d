"""
Chat threads on the realtime channel.

Customer support threads live at `messages/chatId_<encoded email>`.
Direct threads with the admin live at `chats/<chatId>/messages`, where the
chat id is `admin_<uid>` for suppliers and `user_<uid>` for customers.
Every pushed message is stored and published to the thread's subscribers.
"""

import asyncio
import logging
import re
import time
from typing import List, Optional

from database import to_public
from errors import ValidationFailed
from media import DATA_URI_RE, MediaHost
from orders import OrderBook, format_summary
from realtime import SubscriptionManager
from schemas import ChatMessage

logger = logging.getLogger(__name__)

CHAT = "chat"
ORDER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{5,}$")

LOOKING_UP = "Looking up your order details..."
NOT_FOUND = "Sorry, I couldn't find an order with that ID. Please check and try again."


def encode_email(email: str) -> str:
    return re.sub(r"[.#$\[\]]", "_", email)


def support_thread(email: str) -> str:
    return f"messages/chatId_{encode_email(email)}"


def direct_thread(chat_id: str) -> str:
    if not chat_id or "/" in chat_id:
        raise ValidationFailed("Invalid chat id")
    return f"chats/{chat_id}/messages"


def supplier_thread(uid: str) -> str:
    return direct_thread(f"admin_{uid}")


def customer_thread(uid: str) -> str:
    return direct_thread(f"user_{uid}")


def looks_like_order_id(text: str) -> bool:
    return bool(ORDER_ID_RE.match(text.strip()))


class ChatChannel:
    def __init__(self, db, subscriptions: SubscriptionManager):
        self.db = db
        self.subscriptions = subscriptions

    def push(self, path: str, message: dict) -> dict:
        doc = ChatMessage(**message).model_dump(exclude_none=True)
        doc["path"] = path
        # millisecond timestamps keep messages ordered the way clients sort them
        doc["timestamp"] = int(time.time() * 1000)
        doc.setdefault("isRead", False)
        self.db[CHAT].insert_one(doc)
        public = to_public(doc)
        self.subscriptions.publish(path, public)
        return public

    def history(self, path: str, limit: int = 200) -> List[dict]:
        cursor = self.db[CHAT].find({"path": path}).sort([("timestamp", 1), ("_id", 1)]).limit(limit)
        return [to_public(m) for m in cursor]

    def mark_read(self, path: str, sender: str) -> int:
        result = self.db[CHAT].update_many({"path": path, "sender": sender, "isRead": False},
                                           {"$set": {"isRead": True}})
        return result.modified_count

    def unread_count(self, path: str, sender: str) -> int:
        return self.db[CHAT].count_documents({"path": path, "sender": sender, "isRead": False})

    def subscribe(self, path: str, callback):
        return self.subscriptions.subscribe(path, lambda _topic, message: callback(message))


class SupportDesk:
    """Customer side of support chat, with automatic order lookups."""

    def __init__(self, channel: ChatChannel, orders: OrderBook):
        self.channel = channel
        self.orders = orders

    def send(self, email: str, text: str) -> List[dict]:
        text = (text or "").strip()
        if not text:
            raise ValidationFailed("Message cannot be empty")
        path = support_thread(email)
        sent = [self.channel.push(path, {"text": text, "sender": "customer", "email": email})]
        if looks_like_order_id(text):
            sent.append(self.channel.push(path, {"text": LOOKING_UP, "sender": "service"}))
            order = self.orders.find(text)
            if order and order.get("userEmail") == email:
                sent.append(self.channel.push(path, {"text": format_summary(order), "sender": "service"}))
            else:
                logger.info("support lookup for %r found nothing", text)
                sent.append(self.channel.push(path, {"text": NOT_FOUND, "sender": "service"}))
        return sent

    def history(self, email: str) -> List[dict]:
        return self.channel.history(support_thread(email))


class DirectChat:
    """A supplier's or customer's own thread with the admin."""

    def __init__(self, channel: ChatChannel, media: MediaHost):
        self.channel = channel
        self.media = media

    def open(self, path: str) -> List[dict]:
        self.channel.mark_read(path, "admin")
        return self.channel.history(path)

    async def send(self, path: str, sender: str, profile: dict, text: str = "",
                   file: Optional[str] = None, file_name: Optional[str] = None) -> dict:
        text = (text or "").strip()
        if not text and not file:
            raise ValidationFailed("Message cannot be empty")
        message = {
            "text": text or file_name or "Attachment",
            "sender": sender,
            "senderId": profile["uid"],
            "senderName": profile.get("businessName") or profile.get("name") or sender.title(),
        }
        if file:
            file_url = await self.media.store("chat_attachment", file, file_name or "attachment")
            match = DATA_URI_RE.match(file)
            file_type = match.group("type") if match else None
            message.update({"fileUrl": file_url, "fileName": file_name, "fileType": file_type})
            if file_type and file_type.startswith("image/"):
                message["imageUrl"] = file_url
        return await asyncio.to_thread(self.channel.push, path, message)
