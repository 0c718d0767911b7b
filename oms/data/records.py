"""
SQLAlchemy database models.
These are the authoritative source of truth for order data.

Rolls live in their own table but have no lifecycle of their own: they are
owned by exactly one order, replaced wholesale on update and deleted with
the order (cascade="all, delete-orphan").
"""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from oms.data.database import Base
from oms.models import Order, Roll


def new_order_id() -> str:
    return uuid.uuid4().hex


class OrderRecord(Base):
    """
    Order root row - maps to the 'orders' table.
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=new_order_id)
    order_number = Column(String(100), nullable=True)
    company_name = Column(String(255), nullable=False, index=True)
    broker = Column(String(255), nullable=True)
    order_date = Column(DateTime, nullable=False)
    expected_delivery = Column(DateTime, nullable=True, index=True)
    notes = Column(Text, nullable=True)

    # Naive UTC, assigned by the store (not the database) so tests can pin the clock
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)

    rolls = relationship(
        "RollRecord",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="RollRecord.position",
        lazy="selectin",
    )

    def to_domain(self) -> Order:
        return Order(
            id=self.id,
            order_number=self.order_number,
            company_name=self.company_name,
            broker=self.broker,
            order_date=self.order_date,
            expected_delivery=self.expected_delivery,
            notes=self.notes,
            rolls=[roll.to_domain() for roll in self.rolls],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class RollRecord(Base):
    """Embedded line item - maps to the 'order_rolls' table."""
    __tablename__ = "order_rolls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    roll_number = Column(String(100), nullable=False)
    grade = Column(String(100), nullable=False, index=True)
    hardness = Column(String(100), nullable=False, default="")
    machining = Column(String(100), nullable=False, default="")
    roll_description = Column(Text, nullable=False, default="")
    dimensions = Column(String(255), nullable=False, default="")
    status = Column(String(20), nullable=False, index=True)

    order = relationship("OrderRecord", back_populates="rolls")

    @classmethod
    def from_domain(cls, roll: Roll, position: int) -> "RollRecord":
        return cls(
            position=position,
            roll_number=roll.roll_number,
            grade=roll.grade,
            hardness=roll.hardness,
            machining=roll.machining,
            roll_description=roll.roll_description,
            dimensions=roll.dimensions,
            status=roll.status.value,
        )

    def to_domain(self) -> Roll:
        return Roll(
            roll_number=self.roll_number,
            grade=self.grade,
            hardness=self.hardness or "",
            machining=self.machining or "",
            roll_description=self.roll_description or "",
            dimensions=self.dimensions or "",
            status=self.status,
        )
