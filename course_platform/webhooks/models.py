"""WooCommerce order payload (the subset ingestion reads)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Billing(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str = ""
    first_name: str = ""
    last_name: str = ""


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    product_id: int | None = None
    name: str = ""
    sku: str = ""
    quantity: int = 1
    total: Decimal = Decimal("0")

    @field_validator("sku", "name", mode="before")
    @classmethod
    def _none_to_empty(cls, v: object) -> object:
        return "" if v is None else v


class WooCommerceOrder(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    status: str
    order_key: str = ""
    currency: str = ""
    total: Decimal = Decimal("0")
    customer_id: int | None = None
    payment_method_title: str = ""
    date_created: datetime | None = None
    billing: Billing = Field(default_factory=Billing)
    line_items: list[LineItem] = Field(default_factory=list)

    @field_validator("date_created", mode="before")
    @classmethod
    def _blank_date(cls, v: object) -> object:
        return None if v in ("", None) else v

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"
