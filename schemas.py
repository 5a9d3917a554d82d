"""
Database Schemas for the Marketplace

Each Pydantic model describes a document the service writes. Stored field
names follow the camelCase shape the mobile client reads.

Collections:
- userprofile
- products (+ variants)
- cart
- orders
- reviews
- feedback
- promotions
- settings
- chat
- favorite
- mail
- paymentsessions
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

ROLES = ("customer", "supplier", "delivery")
PRODUCT_STATUSES = ("unverified", "verified", "rejected")
ORDER_STATUSES = ("pending", "accepted", "delivered", "shipped", "cancelled", "success")
FEEDBACK_CATEGORIES = ("general", "product", "delivery", "payment", "app")


class Coordinates(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ShippingAddress(BaseModel):
    address: str = Field("", description="Street address or area")
    city: str = ""
    country: str = "Ethiopia"
    postalCode: str = ""
    apartment: str = ""
    coordinates: Coordinates = Field(default_factory=Coordinates)


class CustomerDetails(BaseModel):
    firstName: str = ""
    lastName: str = ""
    phone: str = ""


class CartLine(BaseModel):
    id: str = Field(..., description="<productId>_<variantId>")
    productId: Optional[str] = None
    variantId: Optional[str] = None
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    imageUrl: Optional[str] = None
    variantDetails: Dict[str, str] = Field(default_factory=dict)
    stock: Optional[int] = None


class UserProfile(BaseModel):
    uid: str
    name: str
    email: str
    phone: Optional[str] = None
    role: str = Field("customer", description="customer | supplier | delivery")
    address: Optional[str] = None
    location: Optional[str] = None
    profilePicture: Optional[str] = None
    status: str = Field("active", description="active | pending | blocked")
    businessName: Optional[str] = None
    tradeType: Optional[str] = None
    tradeLicense: Optional[str] = None


class Product(BaseModel):
    name: str
    description: str
    category: str
    brand: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    video: str = ""
    status: str = Field("unverified", description="unverified | verified | rejected")
    supplierId: str
    supplierEmail: Optional[str] = None
    attributes: List[str] = Field(default_factory=list)
    isRead: bool = False
    isNew: bool = True


class Variant(BaseModel):
    productId: str
    values: Dict[str, str]
    price: float = Field(..., gt=0)
    stock: int = Field(..., ge=0)
    image: str


class VariantIn(BaseModel):
    """One purchasable configuration; fields are optional so the submitter can
    report every missing value instead of failing on the first."""
    values: Dict[str, Optional[str]] = Field(default_factory=dict)
    price: Optional[float] = None
    stock: Optional[int] = None
    image: Optional[str] = Field(None, description="Hosted URL or base64 data URI")


class ProductSubmission(BaseModel):
    name: str = ""
    description: str = ""
    category: str = ""
    brand: Optional[str] = None
    attributes: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list, description="Hosted URLs or base64 data URIs")
    video: Optional[str] = None
    variants: List[VariantIn] = Field(default_factory=list)


class Review(BaseModel):
    productId: str
    productName: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    reviewText: str = ""
    userEmail: str
    customerName: str = "Anonymous"
    orderId: str
    itemIndex: int = 0
    orderData: Dict = Field(default_factory=dict)
    productData: Dict = Field(default_factory=dict)


class Feedback(BaseModel):
    userId: str
    userEmail: str
    title: str
    feedback: str
    rating: int = Field(..., ge=1, le=5)
    category: str = "general"
    imageUrl: Optional[str] = None
    status: str = Field("pending", description="pending | reviewed | resolved")


class Promotion(BaseModel):
    type: str = Field(..., description="image | text")
    imageUrl: Optional[str] = None
    text: Optional[str] = None
    active: bool = True


class ChatMessage(BaseModel):
    text: str = ""
    sender: str = Field(..., description="customer | user | service | supplier | admin")
    email: Optional[str] = None
    senderId: Optional[str] = None
    senderName: Optional[str] = None
    fileUrl: Optional[str] = None
    fileName: Optional[str] = None
    fileType: Optional[str] = None
    imageUrl: Optional[str] = None
    isRead: bool = False


class Favorite(BaseModel):
    userId: str
    productId: str


class MailMessage(BaseModel):
    to: str
    subject: str
    text: str
    html: Optional[str] = None
