"""
Media host client (Cloudinary-style unsigned uploads).

Each asset category posts to a fixed endpoint with its own upload preset
and folder, and gets back the hosted `secure_url`.
"""

import base64
import binascii
import logging
import os
import re
from typing import NamedTuple, Optional, Tuple

import httpx

from errors import MediaUploadError, ValidationFailed

logger = logging.getLogger(__name__)

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "demo")
CLOUDINARY_API_URL = os.getenv("CLOUDINARY_API_URL", "https://api.cloudinary.com/v1_1")
MEDIA_UPLOAD_TIMEOUT = float(os.getenv("MEDIA_UPLOAD_TIMEOUT", "60"))

DATA_URI_RE = re.compile(r"^data:(?P<type>[\w.+-]+/[\w.+-]+)?(;[\w=-]+)*;base64,(?P<data>.*)$", re.S)


class MediaTarget(NamedTuple):
    resource: str  # image | video | auto
    preset: str
    folder: str


MEDIA_TARGETS = {
    "product_image": MediaTarget("image", "product", "samples/ecommerce"),
    "product_video": MediaTarget("video", "product", "samples/ecommerce"),
    "profile_picture": MediaTarget("image", "userprofile", "samples/ecommerce"),
    "trade_license": MediaTarget("image", "supplier", "samples/ecommerce/staff_agreements"),
    "chat_attachment": MediaTarget("auto", "supplier", "samples/ecommerce/chat"),
    "feedback_image": MediaTarget("image", "userprofile", "samples/ecommerce/feedback"),
}


def is_hosted(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(("http://", "https://"))


def decode_data_uri(value: str) -> Tuple[bytes, str]:
    """Split a base64 data URI (or bare base64) into bytes and a content type."""
    match = DATA_URI_RE.match(value or "")
    content_type = "application/octet-stream"
    payload = value
    if match:
        content_type = match.group("type") or content_type
        payload = match.group("data")
    try:
        return base64.b64decode(payload, validate=True), content_type
    except (binascii.Error, ValueError):
        raise ValidationFailed("File must be a hosted URL or base64 data")


class MediaHost:
    def __init__(self, cloud_name: str = CLOUDINARY_CLOUD_NAME, api_url: str = CLOUDINARY_API_URL,
                 timeout: float = MEDIA_UPLOAD_TIMEOUT, transport: httpx.AsyncBaseTransport = None):
        self.cloud_name = cloud_name
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def endpoint(self, target: MediaTarget) -> str:
        return f"{self.api_url}/{self.cloud_name}/{target.resource}/upload"

    async def upload(self, category: str, data: bytes, filename: str = "upload",
                     content_type: str = "application/octet-stream") -> str:
        target = MEDIA_TARGETS.get(category)
        if target is None:
            raise ValidationFailed(f"Unknown media category: {category}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.endpoint(target),
                    data={"upload_preset": target.preset, "folder": target.folder},
                    files={"file": (filename, data, content_type)},
                )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("upload to %s failed: %s", category, e)
            raise MediaUploadError("Failed to upload. Try again.")
        url = body.get("secure_url")
        if not url:
            logger.error("upload to %s rejected: %s", category, body.get("error"))
            raise MediaUploadError("Failed to upload file")
        return url

    async def store(self, category: str, value: str, filename: str = "upload") -> str:
        """Return `value` as-is when already hosted, otherwise upload it."""
        if is_hosted(value):
            return value
        data, content_type = decode_data_uri(value)
        return await self.upload(category, data, filename, content_type)
