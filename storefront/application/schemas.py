from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar
from storefront.domain.models import ALGERIAN_REGIONS, Category, OrderStatus

T = TypeVar("T")

class CanonicalModel(BaseModel):
    """Attributes are snake_case in Python; the serialized record shape is camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class Product(CanonicalModel):
    id: str
    name: str = ""
    description: str = ""
    price: float = 0.0
    image_url: str = ""
    category: Category = Category.SUPPLEMENT
    # Only tracked by the remote backend
    stock_quantity: Optional[int] = None
    created_at: datetime
    updated_at: datetime

class Order(CanonicalModel):
    id: str
    product_id: str = ""
    # Snapshot taken when the order was placed
    product_name: str = ""
    product_price: float = 0.0
    customer_name: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    customer_region: str = ""
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
    updated_at: datetime

class ProductCreate(CanonicalModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    price: float = Field(ge=0)
    image_url: Optional[str] = None
    category: Category = Category.SUPPLEMENT
    stock_quantity: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

class ProductUpdate(CanonicalModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    category: Optional[Category] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", "description")
    @classmethod
    def _not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("must not be blank")
        return value.strip() if value is not None else value

class OrderCreate(CanonicalModel):
    # Extra keys such as a caller-supplied "status" are dropped
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=1)
    customer_address: str = Field(min_length=1)
    customer_region: str

    @field_validator("product_id", mode="before")
    @classmethod
    def _id_as_text(cls, value):
        return str(value) if isinstance(value, int) else value

    @field_validator("customer_name", "customer_phone", "customer_address")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("customer_region")
    @classmethod
    def _known_region(cls, value: str) -> str:
        if value not in ALGERIAN_REGIONS:
            raise ValueError(f"unknown region: {value}")
        return value

class OrderStatusUpdate(CanonicalModel):
    status: OrderStatus

class DataSource(str, Enum):
    CACHE = "cache"
    REMOTE = "remote"
    LOCAL = "local"
    NONE = "none"

class StorageResult(BaseModel, Generic[T]):
    """Outcome of a storage operation.

    ``value`` follows the operation's contract (list, record or None, bool).
    ``fallback_used`` is set when the remote backend was configured but failed
    and the local store answered instead; ``ok`` is False only when the
    operation could not be carried out at all.
    """
    value: Optional[T] = None
    ok: bool = True
    source: DataSource = DataSource.NONE
    fallback_used: bool = False
    error: Optional[str] = None
