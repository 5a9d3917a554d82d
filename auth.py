"""
Accounts, bearer tokens and the session provider.

Screens never read a cached profile themselves: they ask the
SessionProvider for the current profile and subscribe to its changes.
"""

import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from database import create_document, to_public, utcnow
from errors import AuthenticationFailed, NotFound, PermissionDenied, ValidationFailed
from realtime import Subscription, SubscriptionManager
from schemas import ROLES, MailMessage, UserProfile
from validations import (MIN_PASSWORD_LENGTH, format_ethiopian_phone, validate_email,
                         validate_ethiopian_phone, validate_name)

logger = logging.getLogger(__name__)

# Security settings
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkeychange")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 8))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 30))
PASSWORD_RESET_URL = os.getenv("PASSWORD_RESET_URL", "http://localhost:8000/auth/password-reset")

PROFILES = "userprofile"
MAIL = "mail"
EDITABLE_FIELDS = {"name", "phone", "address", "location", "profilePicture", "businessName", "tradeType"}

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationFailed("Could not validate credentials")
    uid = payload.get("sub")
    # reset links are not sign-in tokens
    if uid is None or payload.get("purpose"):
        raise AuthenticationFailed("Could not validate credentials")
    return uid


def public_profile(doc: dict) -> dict:
    profile = to_public(doc)
    profile.pop("password", None)
    profile.pop("id", None)
    return profile


def register_account(db, *, name: str, email: str, password: str, role: str = "customer",
                     phone: str = None, **extra) -> dict:
    email = (email or "").strip().lower()
    if not name or not email or not password:
        raise ValidationFailed("Please fill in all fields.")
    if not validate_email(email):
        raise ValidationFailed("Invalid email format")
    if not validate_name(name):
        raise ValidationFailed("Name may only contain letters and spaces")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    phone = format_ethiopian_phone(phone) if phone else None
    if phone and not validate_ethiopian_phone(phone):
        raise ValidationFailed("Phone number must look like 09XXXXXXXX or +2519XXXXXXXX")
    if role not in ROLES:
        raise ValidationFailed(f"Unknown role: {role}")
    if db[PROFILES].find_one({"email": email}):
        raise ValidationFailed("Email already registered")

    uid = uuid.uuid4().hex
    profile = UserProfile(
        uid=uid,
        name=name,
        email=email,
        phone=phone,
        role=role,
        # suppliers wait for approval before they can sign in
        status="pending" if role == "supplier" else "active",
        **{k: v for k, v in extra.items() if v is not None},
    )
    doc = profile.model_dump(exclude_none=True)
    doc.update({
        "_id": uid,
        "password": get_password_hash(password),
        "createdAt": utcnow(),
        "updatedAt": utcnow(),
    })
    try:
        db[PROFILES].insert_one(doc)
    except DuplicateKeyError:
        raise ValidationFailed("Email already registered")
    logger.info("registered %s account %s", role, doc["uid"])
    return public_profile(doc)


def login(db, email: str, password: str) -> dict:
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationFailed("Email and password are required")
    user = db[PROFILES].find_one({"email": email})
    if not user or not verify_password(password, user.get("password", "")):
        raise AuthenticationFailed("Incorrect email or password", title="Login Failed")
    if user.get("status") == "blocked":
        raise PermissionDenied("Your account has been blocked. Please contact support.", title="Account Blocked")
    if user.get("status") == "pending":
        raise PermissionDenied("Your account is pending approval.", title="Account Pending")
    token = create_access_token({"sub": user["uid"], "role": user["role"]})
    return {"access_token": token, "token_type": "bearer", "profile": public_profile(user)}


class SessionProvider:
    """Resolves the signed-in profile for a bearer token and publishes edits."""

    def __init__(self, db, subscriptions: SubscriptionManager):
        self.db = db
        self.subscriptions = subscriptions

    @staticmethod
    def topic(uid: str) -> str:
        return f"{PROFILES}/{uid}"

    def get_current_profile(self, token: str) -> dict:
        uid = decode_access_token(token)
        user = self.db[PROFILES].find_one({"_id": uid})
        if not user:
            raise AuthenticationFailed("Could not validate credentials")
        if user.get("status") == "blocked":
            raise PermissionDenied("Your account has been blocked. Please contact support.", title="Account Blocked")
        return public_profile(user)

    def on_profile_change(self, uid: str, callback: Callable[[dict], None]) -> Subscription:
        return self.subscriptions.subscribe(self.topic(uid), lambda _topic, profile: callback(profile))

    def update_profile(self, uid: str, changes: dict) -> dict:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailed(f"Cannot edit: {', '.join(sorted(unknown))}")
        if "name" in changes and not validate_name(changes["name"]):
            raise ValidationFailed("Name may only contain letters and spaces")
        if changes.get("phone"):
            changes = {**changes, "phone": format_ethiopian_phone(changes["phone"])}
        if changes.get("phone") and not validate_ethiopian_phone(changes["phone"]):
            raise ValidationFailed("Phone number must look like 09XXXXXXXX or +2519XXXXXXXX")
        result = self.db[PROFILES].find_one_and_update(
            {"_id": uid},
            {"$set": {**changes, "updatedAt": utcnow()}},
            return_document=True,
        )
        if not result:
            raise NotFound("User profile not found. Please log in again.")
        profile = public_profile(result)
        self.subscriptions.publish(self.topic(uid), profile)
        return profile


def _password_fingerprint(user: dict) -> str:
    # changes with every new password, so a reset link works once
    return user.get("password", "")[-12:]


def request_password_reset(db, email: str) -> str:
    """Queue a reset link in the mail collection and return its token."""
    email = (email or "").strip().lower()
    if not email:
        raise ValidationFailed("Please enter your email address.", title="Email Required")
    if not validate_email(email):
        raise ValidationFailed("Please enter a valid email address.", title="Invalid Email")
    user = db[PROFILES].find_one({"email": email})
    if not user:
        raise NotFound("No account exists with this email address.", title="Reset Failed")
    token = create_access_token(
        {"sub": user["uid"], "purpose": "reset", "pwd": _password_fingerprint(user)},
        expires_delta=timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES),
    )
    link = f"{PASSWORD_RESET_URL}?token={token}"
    create_document(db, MAIL, MailMessage(
        to=email,
        subject="Reset your password",
        text=f"Follow this link to choose a new password: {link}\n"
             f"The link expires in {RESET_TOKEN_EXPIRE_MINUTES} minutes.",
    ))
    logger.info("password reset requested for %s", user["uid"])
    return token


def reset_password(db, token: str, new_password: str) -> dict:
    invalid = AuthenticationFailed("This reset link is invalid or has expired.", title="Reset Failed")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise invalid
    if payload.get("purpose") != "reset":
        raise invalid
    user = db[PROFILES].find_one({"_id": payload.get("sub")})
    if not user or payload.get("pwd") != _password_fingerprint(user):
        raise invalid
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    db[PROFILES].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": get_password_hash(new_password), "updatedAt": utcnow()}},
    )
    logger.info("password reset for %s", user["uid"])
    return {"message": "Your password has been updated. Please sign in."}
