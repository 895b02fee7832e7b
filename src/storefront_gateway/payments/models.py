"""Cart and checkout request models."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Customer and shipping values travel as processor metadata values.
MAX_FIELD_LENGTH = 500


class _StorefrontModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )


class CartItem(_StorefrontModel):
    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    vendor: str = ""
    unit_price: Decimal = Field(
        ge=0,
        validation_alias=AliasChoices("unitPrice", "unit_price", "price"),
    )
    quantity: int = Field(ge=1)


class Customer(_StorefrontModel):
    name: str = Field(min_length=1, max_length=MAX_FIELD_LENGTH)
    email: str = Field(min_length=3, max_length=MAX_FIELD_LENGTH)
    phone: str = Field(default="", max_length=MAX_FIELD_LENGTH)


class ShippingAddress(_StorefrontModel):
    street: str = Field(max_length=MAX_FIELD_LENGTH)
    locality: str = Field(
        default="",
        max_length=MAX_FIELD_LENGTH,
        validation_alias=AliasChoices("locality", "colonia"),
    )
    postal_code: str = Field(
        max_length=MAX_FIELD_LENGTH,
        validation_alias=AliasChoices("postalCode", "postal_code", "zip"),
    )
    city: str = Field(max_length=MAX_FIELD_LENGTH)
    region: str = Field(
        max_length=MAX_FIELD_LENGTH,
        validation_alias=AliasChoices("region", "state"),
    )
    notes: str | None = Field(default=None, max_length=MAX_FIELD_LENGTH)


class CheckoutRequest(_StorefrontModel):
    """A submitted cart.

    ``items`` may be empty here so the orchestrator owns that rejection.
    """

    items: tuple[CartItem, ...] = ()
    customer: Customer
    shipping_address: ShippingAddress

    @model_validator(mode="before")
    @classmethod
    def _lift_nested_address(cls, data: Any) -> Any:
        # Older storefront pages nest the address under customer.address.
        if not isinstance(data, dict):
            return data
        if data.get("shippingAddress") or data.get("shipping_address"):
            return data
        customer = data.get("customer")
        if isinstance(customer, dict) and isinstance(customer.get("address"), dict):
            data = dict(data)
            data["shippingAddress"] = customer["address"]
            data["customer"] = {k: v for k, v in customer.items() if k != "address"}
        return data


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str
    metadata: dict[str, str] = field(default_factory=dict)
