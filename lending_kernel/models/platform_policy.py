"""
Module: lending_kernel.models.platform_policy
Responsibility: ORM persistence for versioned PlatformRiskPolicy snapshots.
Architecture position: Kernel > Models.

Invariants enforced:
    - version is unique (uq_risk_policy_version).
    - Rows are never edited; publishing a change inserts a new version.

Failure modes:
    - InvalidRiskPolicyError from ``to_domain`` if a stored row violates the
      policy bounds (only possible through out-of-band writes).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase
from lending_kernel.domain.policy import PlatformRiskPolicy


class PlatformRiskPolicyModel(TrackedBase):
    """One immutable version of the platform risk settings."""

    __tablename__ = "platform_risk_policies"

    __table_args__ = (
        UniqueConstraint("version", name="uq_risk_policy_version"),
        Index("idx_risk_policy_effective", "effective_from"),
    )

    version: Mapped[int] = mapped_column(nullable=False)
    effective_from: Mapped[datetime] = mapped_column(nullable=False)

    provision_rate: Mapped[Decimal] = mapped_column(nullable=False)
    min_ltv_ratio: Mapped[Decimal] = mapped_column(nullable=False)
    max_ltv_ratio: Mapped[Decimal] = mapped_column(nullable=False)
    liquidation_fee_rate: Mapped[Decimal] = mapped_column(nullable=False)
    redelivery_fee_rate: Mapped[Decimal] = mapped_column(nullable=False)
    liquidation_slippage_rate: Mapped[Decimal] = mapped_column(nullable=False)
    min_interest_rate: Mapped[Decimal] = mapped_column(nullable=False)
    max_interest_rate: Mapped[Decimal] = mapped_column(nullable=False)

    @classmethod
    def from_domain(cls, policy: PlatformRiskPolicy, created_by_id) -> "PlatformRiskPolicyModel":
        return cls(
            version=policy.version,
            effective_from=policy.effective_from,
            provision_rate=policy.provision_rate,
            min_ltv_ratio=policy.min_ltv_ratio,
            max_ltv_ratio=policy.max_ltv_ratio,
            liquidation_fee_rate=policy.liquidation_fee_rate,
            redelivery_fee_rate=policy.redelivery_fee_rate,
            liquidation_slippage_rate=policy.liquidation_slippage_rate,
            min_interest_rate=policy.min_interest_rate,
            max_interest_rate=policy.max_interest_rate,
            created_by_id=created_by_id,
        )

    def to_domain(self) -> PlatformRiskPolicy:
        return PlatformRiskPolicy(
            version=int(self.version),
            effective_from=self.effective_from,
            provision_rate=self.provision_rate,
            min_ltv_ratio=self.min_ltv_ratio,
            max_ltv_ratio=self.max_ltv_ratio,
            liquidation_fee_rate=self.liquidation_fee_rate,
            redelivery_fee_rate=self.redelivery_fee_rate,
            liquidation_slippage_rate=self.liquidation_slippage_rate,
            min_interest_rate=self.min_interest_rate,
            max_interest_rate=self.max_interest_rate,
        )

    def __repr__(self) -> str:
        return f"<PlatformRiskPolicy v{self.version} from {self.effective_from}>"
