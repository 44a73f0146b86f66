"""Cost calculation model module."""

from __future__ import annotations

from sqlalchemy import Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cobuy.models.base import AuditMixin, Base
from cobuy.utils.ids import new_id


class CostCalculation(Base, AuditMixin):
    """Priced (group, property) context a negotiation session splits."""

    __tablename__ = "cost_calculations"
    __table_args__ = (UniqueConstraint("group_id", "property_id", name="uq_cost_calculations_group_property"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    group_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    purchase_price: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    notary_fees: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    transfer_tax: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    inspection_costs: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    other_costs: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    total_costs: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
