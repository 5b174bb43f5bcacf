"""Broker cost model: slippage fills, fees and realized P&L.

Costs are proportional to notional:
- Every fill (entry and exit) is moved against the trader by half the
  round-trip slippage.
- Fees and the slippage cost line are charged on the full round-trip, on the
  notional being closed.

Key principle: the broker applies costs, the strategy doesn't know about them.
"""

from dataclasses import dataclass

from config.schema import CostParams
from engine.models import LONG


@dataclass
class BrokerModel:
    """Proportional cost model.

    Attributes:
        costs: Fee, slippage, funding and tax assumptions
    """
    costs: CostParams

    @property
    def half_slippage(self) -> float:
        return self.costs.slippage_roundtrip_pct / 2

    def apply_slippage(self, price: float, side: str, is_entry: bool = True) -> float:
        """Apply slippage to a theoretical fill price.

        Entry: buy higher, sell lower. Exit: sell lower, buy back higher.
        """
        buying = (side == LONG) == is_entry
        if buying:
            return price * (1 + self.half_slippage)
        return price * (1 - self.half_slippage)

    def calculate_fees(self, notional: float) -> float:
        """Round-trip fees on the closed notional."""
        return notional * self.costs.fee_roundtrip_pct

    def calculate_slippage_cost(self, notional: float) -> float:
        """Round-trip slippage cost on the closed notional."""
        return notional * self.costs.slippage_roundtrip_pct

    def gross_pnl(self, side: str, entry_price: float, exit_price: float, quantity: float) -> float:
        if side == LONG:
            return (exit_price - entry_price) * quantity
        return (entry_price - exit_price) * quantity

    def realized_pnl(self, side: str, entry_price: float, exit_price: float, quantity: float, notional: float):
        """Return (gross, fees, slippage_cost, net) for a close."""
        gross = self.gross_pnl(side, entry_price, exit_price, quantity)
        fees = self.calculate_fees(notional)
        slippage = self.calculate_slippage_cost(notional)
        return gross, fees, slippage, gross - fees - slippage

    def expected_cost_pct(self) -> float:
        """Per-side expected cost used in position sizing (avg fee + avg slippage)."""
        return self.costs.fee_roundtrip_pct / 2 + self.costs.slippage_roundtrip_pct / 2

    def funding_cost(self, notional: float, days_held: float) -> float:
        """Funding carry for reporting (not deducted from ledger PnL)."""
        return notional * self.costs.funding_daily_pct * max(days_held, 0.0)

    def after_tax(self, pnl: float) -> float:
        """PnL after tax on gains (losses are not taxed)."""
        if pnl <= 0:
            return pnl
        return pnl * (1 - self.costs.tax_rate)
