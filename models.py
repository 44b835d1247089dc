from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


class DiscountScope(str, Enum):
    SITE_WIDE = "site-wide"
    CATEGORY = "category"
    ITEM = "item"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class Discount(BaseModel):
    """A discount record as kept in the store. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    code: str
    description: str = ""
    type: DiscountType
    value: float = Field(ge=0)
    scope: DiscountScope = DiscountScope.SITE_WIDE
    category: Optional[str] = None
    productId: Optional[Union[str, int]] = None
    minPurchaseUSD: float = Field(default=0, ge=0)
    maxDiscountUSD: Optional[float] = Field(default=None, ge=0)
    usageLimit: Optional[int] = Field(default=None, ge=0)
    usageCount: int = Field(default=0, ge=0)
    isActive: bool = True
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    stackable: bool = False

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        code = normalize_code(v)
        if not code:
            raise ValueError("code must not be empty")
        return code

    @field_validator("maxDiscountUSD")
    @classmethod
    def _zero_cap_means_uncapped(cls, v: Optional[float]) -> Optional[float]:
        # the admin form stores 0 for "no cap"
        return v or None

    @field_validator("minPurchaseUSD", mode="before")
    @classmethod
    def _missing_minimum(cls, v):
        return 0 if v is None else v

    @field_validator("validFrom", "validUntil")
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _check_scope_target(self):
        if self.type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("percentage value must be between 0 and 100")
        if self.scope == DiscountScope.CATEGORY and not self.category:
            raise ValueError("category is required for category-scoped discounts")
        if self.scope == DiscountScope.ITEM and self.productId in (None, ""):
            raise ValueError("productId is required for item-scoped discounts")
        return self


class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Union[str, int]
    name: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class CartContext(BaseModel):
    """
    Cart snapshot a resolution runs against.

    `subtotal` is taken as given; use `from_items` to derive it from the items.
    """

    model_config = ConfigDict(frozen=True)

    items: List[CartItem] = Field(default_factory=list)
    subtotal: float = Field(ge=0)
    shippingCost: float = Field(default=0, ge=0)

    @classmethod
    def from_items(cls, items: List[CartItem], shipping_cost: float = 0) -> "CartContext":
        subtotal = sum(item.line_total for item in items)
        return cls(items=list(items), subtotal=subtotal, shippingCost=shipping_cost)


class ValidationResult(BaseModel):
    valid: bool
    reason: str = ""


class AppliedDiscount(Discount):
    appliedAmount: float = Field(ge=0)


class DiscountError(BaseModel):
    code: str
    reason: str


class ResolutionResult(BaseModel):
    totalDiscount: float = 0
    appliedDiscounts: List[AppliedDiscount] = Field(default_factory=list)
    errors: List[DiscountError] = Field(default_factory=list)

    @property
    def applied_codes(self) -> List[str]:
        return [d.code for d in self.appliedDiscounts]


# HTTP bodies

class DiscountResponse(BaseModel):
    message: str


class DiscountUpdate(BaseModel):
    description: Optional[str] = None
    type: Optional[DiscountType] = None
    value: Optional[float] = None
    scope: Optional[DiscountScope] = None
    category: Optional[str] = None
    productId: Optional[Union[str, int]] = None
    minPurchaseUSD: Optional[float] = None
    maxDiscountUSD: Optional[float] = None
    usageLimit: Optional[int] = None
    isActive: Optional[bool] = None
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    stackable: Optional[bool] = None


class CartRequest(BaseModel):
    cart: List[CartItem]
    shippingCost: float = Field(default=0, ge=0)

    def to_context(self) -> CartContext:
        return CartContext.from_items(self.cart, self.shippingCost)


class DiscountValidateRequest(CartRequest):
    code: str


class DiscountValidateResponse(BaseModel):
    valid: bool
    discount: Optional[float] = 0
    newTotal: Optional[float] = 0
    message: str


class DiscountResolveRequest(CartRequest):
    codes: List[str] = Field(default_factory=list)


class PricingResponse(ResolutionResult):
    subtotal: float
    shippingCost: float
    total: float


class CheckoutRequest(DiscountResolveRequest):
    sessionId: str


class CheckoutResponse(BaseModel):
    success: bool
    message: str
    subtotal: float
    shippingCost: float
    discount: float
    total: float
    appliedDiscountCodes: List[str] = Field(default_factory=list)
    errors: List[DiscountError] = Field(default_factory=list)
