# orderview/domain/orders/schemas.py
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from .errors import OrderDecodeError, OrderValidationError


class Order(BaseModel):
    """Decoded order as served to readers.

    delivery, payment and items are carried as whatever JSON the producer
    sent; only the scalar fields are typed.
    """

    model_config = ConfigDict(frozen=True, strict=True, extra="ignore")

    order_uid: str = ""
    track_number: str = ""
    entry: str = ""
    delivery: Any = None
    payment: Any = None
    items: Any = None
    locale: str = ""
    internal_signature: str = ""
    customer_id: str = ""
    delivery_service: str = ""
    shardkey: str = ""
    sm_id: int = 0
    date_created: str = ""
    oof_shard: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        # an explicit null leaves the field at its zero value
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


def decode_order(raw: bytes) -> Order:
    # invalid UTF-8 inside strings becomes U+FFFD instead of failing the order
    text = raw.decode("utf-8", errors="replace")
    try:
        return Order.model_validate_json(text)
    except ValidationError as e:
        raise OrderDecodeError(f"cannot decode order: {e.error_count()} error(s), first: {e.errors()[0]['msg']}") from e


def validate_order(order: Order) -> Order:
    if not order.order_uid:
        raise OrderValidationError("missing order_uid")
    return order
