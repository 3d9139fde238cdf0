"""
Quota record model.

One row per owner: free-tier usage plus the plan and subscription status
maintained by the external billing collaborator.
"""
import enum
from sqlalchemy import String, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from docai.models.base import Base, TimestampMixin


class Plan(str, enum.Enum):
    """Subscription plan enum."""
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class SubscriptionStatus(str, enum.Enum):
    """Subscription status enum."""
    INACTIVE = "inactive"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class QuotaRecord(Base, TimestampMixin):
    """
    Per-owner quota ledger row.

    free_jobs_used only ever grows; it is never decremented.
    """
    __tablename__ = "quota_records"

    owner_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    free_jobs_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    plan: Mapped[Plan] = mapped_column(
        SQLEnum(Plan, native_enum=False, length=20, values_callable=_values),
        nullable=False,
        default=Plan.FREE
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus, native_enum=False, length=20, values_callable=_values),
        nullable=False,
        default=SubscriptionStatus.INACTIVE
    )

    @property
    def has_unlimited_access(self) -> bool:
        return self.subscription_status == SubscriptionStatus.ACTIVE and self.plan != Plan.FREE

    def __repr__(self):
        return f"<QuotaRecord(owner={self.owner_id}, used={self.free_jobs_used}, plan={self.plan})>"
