"""Cost totals for a priced property and the per-member amounts of an agreed split."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CostBreakdown:
    purchase_price: float
    notary_fees: float
    transfer_tax: float
    inspection_costs: float
    other_costs: float

    @property
    def total_costs(self) -> float:
        return round(
            self.purchase_price + self.notary_fees + self.transfer_tax + self.inspection_costs + self.other_costs,
            2,
        )


def build_cost_breakdown(
    purchase_price: float,
    notary_fees: float,
    inspection_costs: float,
    transfer_tax_rate: float,
    other_costs: float = 0.0,
) -> CostBreakdown:
    """Derive transfer tax from the purchase price and bundle all cost lines."""
    return CostBreakdown(
        purchase_price=round(purchase_price, 2),
        notary_fees=round(notary_fees, 2),
        transfer_tax=round(purchase_price * transfer_tax_rate, 2),
        inspection_costs=round(inspection_costs, 2),
        other_costs=round(other_costs, 2),
    )


def split_amounts(total_costs: float, percentages: dict[str, float]) -> dict[str, float]:
    """Map each member's agreed percentage to an amount of ``total_costs``."""
    return {user_id: round(total_costs * pct / 100.0, 2) for user_id, pct in percentages.items()}
