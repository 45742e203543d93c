from __future__ import annotations
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

# Each stored class maps onto one collection: Watch -> "watches",
# CartLine -> "cart", Address -> "addresses", *Order -> "orders"

INDIAN_STATES = (
    "Andhra Pradesh", "Arunachal Pradesh", "Assam", "Bihar", "Chhattisgarh",
    "Goa", "Gujarat", "Haryana", "Himachal Pradesh", "Jharkhand",
    "Karnataka", "Kerala", "Madhya Pradesh", "Maharashtra", "Manipur",
    "Meghalaya", "Mizoram", "Nagaland", "Odisha", "Punjab",
    "Rajasthan", "Sikkim", "Tamil Nadu", "Telangana", "Tripura",
    "Uttar Pradesh", "Uttarakhand", "West Bengal",
    "Andaman and Nicobar Islands", "Chandigarh", "Dadra and Nagar Haveli and Daman and Diu",
    "Delhi", "Jammu and Kashmir", "Ladakh", "Lakshadweep", "Puducherry",
)

PaymentMethod = Literal["card", "upi", "netbanking", "cod"]
AddressType = Literal["home", "office", "other"]
SortOrder = Literal["featured", "price_asc", "price_desc", "newest"]
OrderType = Literal["purchase", "pickup", "store"]


# ---------------------- Catalog ----------------------

class WatchIn(BaseModel):
    name: str
    brand: str
    category: str = "luxury"
    description: Optional[str] = None
    price: float = Field(ge=0)
    stock: int = Field(ge=0, default=0)
    image: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    hidden: bool = False


class WatchUpdate(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    features: Optional[List[str]] = None
    hidden: Optional[bool] = None


class Watch(WatchIn):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Availability(BaseModel):
    """Inventory view of one watch."""
    exists: bool
    stock: int = 0
    hidden: bool = False


class CatalogFilter(BaseModel):
    category: Optional[str] = None
    q: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    brands: List[str] = Field(default_factory=list)
    sort: SortOrder = "featured"


# ---------------------- Cart ----------------------

class CartLine(BaseModel):
    id: str
    user_id: str
    watch_id: str
    name: str
    brand: str
    price: float
    image: Optional[str] = None
    quantity: int = Field(ge=0, le=10)
    added_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    out_of_stock: bool = False
    hidden: bool = False
    original_quantity: Optional[int] = None

    @property
    def available(self) -> bool:
        return not self.out_of_stock and not self.hidden and self.quantity > 0


class QuantityUpdate(BaseModel):
    quantity: int


class AddToCart(BaseModel):
    watch_id: str
    quantity: int = Field(1, ge=1)


class LineUpdate(BaseModel):
    """A quantity correction applied while reconciling."""
    line_id: str
    name: str
    new_quantity: int


class CartSummary(BaseModel):
    subtotal: float = 0
    tax: float = 0
    total: float = 0
    item_count: int = 0
    available_quantity: int = 0
    checkout_ready: bool = False


class ReconcileResult(BaseModel):
    lines: List[CartLine]
    updated: List[LineUpdate] = Field(default_factory=list)
    hidden: List[str] = Field(default_factory=list)
    out_of_stock: List[str] = Field(default_factory=list)


class Cart(BaseModel):
    lines: List[CartLine]
    summary: CartSummary
    updated: List[LineUpdate] = Field(default_factory=list)
    hidden: List[str] = Field(default_factory=list)
    out_of_stock: List[str] = Field(default_factory=list)


# ---------------------- Addresses ----------------------

class AddressIn(BaseModel):
    full_name: str = Field(min_length=1)
    phone: str = Field(pattern=r"^[6-9]\d{9}$")
    address: str = Field(min_length=1)
    address2: Optional[str] = None
    city: str = Field(min_length=1)
    state: str
    pincode: str = Field(pattern=r"^\d{6}$")
    address_type: AddressType = "home"

    @field_validator("full_name", "address", "city")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("state")
    @classmethod
    def known_state(cls, v: str) -> str:
        if v not in INDIAN_STATES:
            raise ValueError("unknown state")
        return v


class Address(AddressIn):
    id: str
    user_id: str
    created_at: Optional[datetime] = None


# ---------------------- Checkout ----------------------

class CardDetails(BaseModel):
    number: str = Field(pattern=r"^\d{13,19}$")
    name: str = Field(min_length=1)
    expiry: str = Field(pattern=r"^(0[1-9]|1[0-2])/\d{2}$")
    cvv: str = Field(pattern=r"^\d{3,4}$")

    @field_validator("number", mode="before")
    @classmethod
    def strip_spaces(cls, v):
        return v.replace(" ", "") if isinstance(v, str) else v


class CheckoutRequest(BaseModel):
    address_id: Optional[str] = None
    new_address: Optional[AddressIn] = None
    payment_method: Optional[PaymentMethod] = None
    card: Optional[CardDetails] = None


class OrderItem(BaseModel):
    watch_id: str
    name: str
    brand: str
    price: float
    quantity: int = Field(ge=1)
    image: Optional[str] = None


# ---------------------- Orders ----------------------

class FixedPrice(BaseModel):
    kind: Literal["fixed"] = "fixed"
    amount: float


class AssessedPrice(BaseModel):
    """Price decided once the watch has been inspected."""
    kind: Literal["assessed"] = "assessed"
    surcharge: float = 0

    def display(self) -> str:
        text = "As per the issue"
        if self.surcharge:
            text += f" + express service ₹{self.surcharge:g}"
        return text


ServicePrice = Annotated[Union[FixedPrice, AssessedPrice], Field(discriminator="kind")]


class OrderBase(BaseModel):
    key: Optional[str] = None
    status: str
    timestamp: datetime
    updated_at: Optional[datetime] = None
    user_id: str
    user_email: Optional[str] = None
    customer_name: str


class PurchaseOrder(OrderBase):
    type: Literal["purchase"] = "purchase"
    order_number: str
    items: List[OrderItem]
    subtotal: float
    tax: float
    total_amount: float
    shipping_address: Address
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: Literal["pending", "paid"]
    card_last4: Optional[str] = None


class ServiceOrderBase(OrderBase):
    id: str
    phone: str
    email: str
    brand: str
    issue: str = ""
    service: str
    price: ServicePrice
    express: bool = False
    date: str
    time: str


class PickupOrder(ServiceOrderBase):
    type: Literal["pickup"] = "pickup"
    address: str


class StoreOrder(ServiceOrderBase):
    type: Literal["store"] = "store"
    store: str


Order = Annotated[Union[PurchaseOrder, PickupOrder, StoreOrder], Field(discriminator="type")]
order_adapter: TypeAdapter = TypeAdapter(Order)


class ServiceRequest(BaseModel):
    customer_name: str = Field(min_length=1)
    phone: str = Field(pattern=r"^[6-9]\d{9}$")
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    brand: str
    issue: str = ""
    service: str = "other"
    express: bool = False
    date: str
    time: str


class PickupRequest(ServiceRequest):
    address: str = Field(min_length=1)


class StoreVisitRequest(ServiceRequest):
    store: str = Field(min_length=1)


# ---------------------- Admin ----------------------

class VisibilityResult(BaseModel):
    watch_id: str
    hidden: bool
    cart_lines: int = 0
    failed: int = 0
    complete: bool = True


class DeleteResult(BaseModel):
    watch_id: str
    cart_lines: int = 0
    failed: int = 0
    complete: bool = True


class DashboardStats(BaseModel):
    total_sales: float = 0
    watch_sales: float = 0
    service_sales: float = 0
    watch_orders: int = 0
    pickup_orders: int = 0
    store_orders: int = 0
    total_products: int = 0
    monthly_sales: dict[str, float] = Field(default_factory=dict)
    products_by_category: dict[str, int] = Field(default_factory=dict)
