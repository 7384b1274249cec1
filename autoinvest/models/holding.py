"""
Holding model.

A user's position in one property.  Maintained by the wider platform
(trades, valuations); this service only reads it for portfolio weighting
and token-price lookups.
"""

import uuid
from decimal import Decimal

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Holding(SQLModel, table=True):
    __tablename__ = "holdings"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("user_id", "property_id", name="uq_holdings_user_property"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    property_id: str = Field(max_length=64)
    property_name: str = Field(default="", max_length=255)
    tokens: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=8)
    token_price: Decimal = Field(max_digits=20, decimal_places=4)
    current_value: Decimal = Field(max_digits=20, decimal_places=2)

    def __repr__(self) -> str:
        return f"<Holding user={self.user_id} property={self.property_id} value=${self.current_value}>"
