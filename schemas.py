"""
Database Schemas

Cart service models.
Each stored model corresponds to a MongoDB collection (lowercased class name):
item, cart, transaction, rating.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from offers import OfferTier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Currency(str, Enum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    UPI = "UPI"
    NET_BANKING = "NET_BANKING"
    WALLET = "WALLET"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class Document(BaseModel):
    # Enum fields hold their plain string values so documents store as-is.
    model_config = ConfigDict(use_enum_values=True)


# ----- Catalog -----

class ItemCreate(Document):
    name: str = Field(..., min_length=1, description="Item name")
    description: Optional[str] = Field(None, description="Item description")
    unit_price: float = Field(..., ge=0, description="Price per unit")
    currency: Currency = Field(Currency.INR, description="ISO currency code")
    offer_tier: OfferTier = Field(OfferTier.NONE, description="Promotional offer")
    offer_description: Optional[str] = None
    image_url: Optional[str] = None
    category: str = Field("General", description="Category, e.g. 'citrus', 'berries'")
    in_stock: bool = Field(True, description="Whether available for purchase")
    stock_quantity: int = Field(0, ge=0, description="Available quantity")


class ItemUpdate(Document):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    unit_price: Optional[float] = Field(None, ge=0)
    currency: Optional[Currency] = None
    offer_tier: Optional[OfferTier] = None
    offer_description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    in_stock: Optional[bool] = None
    stock_quantity: Optional[int] = Field(None, ge=0)


class StockUpdate(BaseModel):
    stock_quantity: int = Field(..., ge=0)


class Item(ItemCreate):
    id: str
    rating: float = Field(0, ge=0, le=5, description="Average customer rating")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ----- Cart -----

class CartLine(Document):
    item_id: str
    name: str
    unit_price: float = Field(..., ge=0)
    paid_quantity: int = Field(..., ge=0)
    free_quantity: int = Field(0, ge=0)
    offer_tier: OfferTier = OfferTier.NONE
    added_at: datetime = Field(default_factory=utcnow)

    @property
    def total_quantity(self) -> int:
        return self.paid_quantity + self.free_quantity


class Cart(Document):
    user_id: str
    lines: List[CartLine] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0
    discount_amount: float = 0
    final_price: float = 0
    updated_at: datetime = Field(default_factory=utcnow)

    def line(self, item_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        return None


class AddToCartRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    quantity: int


class UpdateCartItemRequest(BaseModel):
    quantity: int


# ----- Checkout / Transactions -----

class CheckoutRequest(BaseModel):
    payment_method: str = Field(..., min_length=1)
    notes: Optional[str] = None


class TransactionItem(Document):
    item_id: str
    name: str
    paid_quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    offer_tier: OfferTier = OfferTier.NONE
    free_quantity: int = Field(0, ge=0)
    subtotal: float = Field(..., ge=0, description="unit_price x paid_quantity")


class Transaction(Document):
    id: Optional[str] = None
    user_id: str
    items: List[TransactionItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    final_amount: float = Field(..., ge=0)
    currency: Currency = Currency.INR
    payment_method: PaymentMethod
    status: TransactionStatus = TransactionStatus.PENDING
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StatusUpdate(BaseModel):
    status: TransactionStatus


# ----- Ratings -----

class RatingRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    rating: int
    review: Optional[str] = Field(None, max_length=500)


class Rating(Document):
    id: Optional[str] = None
    user_id: str
    item_id: str
    value: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)
    transaction_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RatingResult(BaseModel):
    rating: Rating
    average_rating: float
    total_ratings: int


class RatingEntry(BaseModel):
    value: int
    review: Optional[str] = None
    created_at: datetime


class RatingSummary(BaseModel):
    item_id: str
    item_name: str
    average_rating: float
    total_ratings: int
    ratings: List[RatingEntry] = Field(default_factory=list)


class RatableItem(BaseModel):
    item_id: str
    item_name: str
    purchased_at: datetime


# ----- Auth -----

class AuthUser(BaseModel):
    user_id: str
    email: Optional[str] = None
