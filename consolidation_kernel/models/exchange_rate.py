"""
Module: consolidation_kernel.models.exchange_rate
Responsibility: ORM persistence for spot and period-average exchange rates
    read by the stored exchange rate provider during translation.
Architecture position: Kernel > Models. May import from db/base.py only.

Invariants enforced:
    - rate is positive (before_insert listener in db/immutability.py).
    - from_currency and to_currency are 3-character ISO 4217 codes.
    - One rate per (from, to, kind, effective_date).
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from consolidation_kernel.db.base import TrackedBase


class RateKind(str, Enum):
    SPOT = "spot"
    AVERAGE = "average"


class ExchangeRateModel(TrackedBase):
    """
    One directional conversion factor: 1 from_currency = rate to_currency.

    Non-goals:
        - No inverse consistency or triangulation; store both directions.
    """

    __tablename__ = "exchange_rates"

    __table_args__ = (
        UniqueConstraint(
            "from_currency", "to_currency", "rate_kind", "effective_date",
            name="uq_exchange_rate_pair_kind_date",
        ),
        Index("idx_exchange_rate_lookup", "from_currency", "to_currency", "rate_kind"),
    )

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate_kind: Mapped[str] = mapped_column(String(10), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ExchangeRate {self.from_currency}/{self.to_currency} "
            f"{self.rate_kind} {self.effective_date}: {self.rate}>"
        )
