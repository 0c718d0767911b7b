"""
Pydantic v2 schemas for orders and their rolls.

Wire format is camelCase (``companyName``, ``rollNumber``, ``_id``); Python
attributes are snake_case. Request schemas for creation use extra="forbid"
to reject unknown fields; update bodies ignore server-assigned fields such
as ``_id`` and ``createdAt`` so a client can send back a whole order.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from oms.errors import OrderValidationError
from oms.utils.time import isoformat, to_naive_utc


class RollStatus(str, Enum):
    """
    Closed set of roll statuses. DISPATCHED is terminal.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    DISPATCHED = "dispatched"

    @classmethod
    def _missing_(cls, value):
        # Accept "Pending" and the legacy "dispached" spelling from older data files
        if isinstance(value, str):
            normalized = value.strip().lower()
            normalized = _LEGACY_STATUS.get(normalized, normalized)
            for member in cls:
                if member.value == normalized:
                    return member
        return None


_LEGACY_STATUS = {"dispached": "dispatched"}

_DATETIME_FIELDS = ("order_date", "expected_delivery", "created_at", "updated_at")


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class Roll(_CamelModel):
    """A single manufactured roll embedded in an order."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    roll_number: str = Field(..., min_length=1, description="Roll identifier printed on the unit")
    grade: str = Field(..., min_length=1, description="Material class, e.g. ALLOYS")
    hardness: str = Field(default="", description="Hardness spec, e.g. HRC 45-50")
    machining: str = Field(default="", description="Machining state, e.g. Rough")
    roll_description: str = Field(default="", description="Free-text description")
    dimensions: str = Field(default="", description="Free-form dimensions, e.g. 100x200")
    status: RollStatus = Field(default=RollStatus.PENDING, description="pending | processing | dispatched")


class Order(_CamelModel):
    """
    A stored order. Returned by both the primary and the fallback store.
    """
    id: str = Field(..., alias="_id", description="Store-assigned identifier")
    order_number: Optional[str] = None
    company_name: str
    broker: Optional[str] = None
    order_date: datetime
    expected_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    rolls: List[Roll] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator(*_DATETIME_FIELDS)
    @classmethod
    def _normalize_datetime(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @field_serializer(*_DATETIME_FIELDS, when_used="json")
    def _serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return isoformat(value)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict in wire format."""
        return self.model_dump(mode="json", by_alias=True)


class OrderCreate(_CamelModel):
    """Request body for creating an order."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )

    order_number: Optional[str] = None
    company_name: str = Field(..., min_length=1, description="Customer company name")
    broker: Optional[str] = None
    order_date: Optional[datetime] = Field(default=None, description="Defaults to creation time")
    expected_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    rolls: List[Roll] = Field(default_factory=list)

    @field_validator("order_date", "expected_delivery")
    @classmethod
    def _normalize_datetime(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None


class OrderUpdate(_CamelModel):
    """
    Partial update. Only fields present in the body are applied; ``rolls``,
    when present, replaces the whole roll list.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    order_number: Optional[str] = None
    company_name: Optional[str] = Field(default=None, min_length=1)
    broker: Optional[str] = None
    order_date: Optional[datetime] = None
    expected_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    rolls: Optional[List[Roll]] = None

    @field_validator("company_name", "order_date", "rolls")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value

    @field_validator("order_date", "expected_delivery")
    @classmethod
    def _normalize_datetime(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    def to_patch(self) -> Dict[str, Any]:
        """Fields explicitly set by the client, snake_case keys."""
        return {name: getattr(self, name) for name in self.model_fields_set}


def validation_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten pydantic errors into [{field, message}] using wire field names."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body",)]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "invalid")})
    return errors


def parse_order_create(payload: Any) -> OrderCreate:
    if isinstance(payload, OrderCreate):
        return payload
    try:
        return OrderCreate.model_validate(payload)
    except ValidationError as exc:
        raise OrderValidationError("Invalid order data", validation_errors(exc)) from exc


def parse_order_update(payload: Any) -> OrderUpdate:
    if isinstance(payload, OrderUpdate):
        return payload
    try:
        return OrderUpdate.model_validate(payload)
    except ValidationError as exc:
        raise OrderValidationError("Invalid order data", validation_errors(exc)) from exc
