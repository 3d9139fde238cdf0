"""
Quota ledger: free-tier usage and plan per owner.

Admission rules, evaluated in order:
1. Active paid subscription -> always allowed, unlimited.
2. Free tier with used < limit -> allowed.
3. Otherwise -> rejected, upgrade required.

Credits are taken with a single conditional increment, never a separate
read and write. Store failures are raised as QuotaStoreError so the
upload handler can decide to degrade instead of failing the request.
"""
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docai.errors import QuotaStoreError
from docai.logging_config import get_logger
from docai.models.quota import QuotaRecord, Plan, SubscriptionStatus

log = get_logger(component="quota")

UNLIMITED = -1


@dataclass
class AdmissionDecision:
    """Outcome of an admission check."""
    allowed: bool
    credits_remaining: int
    requires_upgrade: bool = False


@dataclass
class CreditStatus:
    """Display view of an owner's credits."""
    credits_used: int
    credits_remaining: int
    plan: str
    has_unlimited_access: bool


class QuotaService:
    """Service for checking and recording free-tier usage."""

    def __init__(self, db: AsyncSession, free_limit: int = 5):
        self.db = db
        self.free_limit = free_limit

    async def get_record(self, owner_id: str) -> QuotaRecord | None:
        """Get the quota record for an owner, or None if none exists."""
        stmt = (
            select(QuotaRecord)
            .where(QuotaRecord.owner_id == owner_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_record(self, owner_id: str) -> QuotaRecord:
        """
        Get the owner's quota record, creating a zero-usage one if missing.

        A concurrent creation by another request is not an error: the
        duplicate-key insert is rolled back and the existing row is read.
        """
        record = await self.get_record(owner_id)
        if record is not None:
            return record

        self.db.add(QuotaRecord(
            owner_id=owner_id,
            free_jobs_used=0,
            plan=Plan.FREE,
            subscription_status=SubscriptionStatus.INACTIVE,
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            log.info("quota_record_already_initialized", owner_id=owner_id)
        else:
            log.info("quota_record_created", owner_id=owner_id, free_limit=self.free_limit)

        record = await self.get_record(owner_id)
        if record is None:
            raise QuotaStoreError("Quota record vanished after creation")
        return record

    async def check_admission(self, owner_id: str) -> AdmissionDecision:
        """
        Decide whether the owner may create one more job.

        Raises:
            QuotaStoreError: if the ledger could not be read or initialized
        """
        try:
            record = await self.get_or_create_record(owner_id)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise QuotaStoreError(f"Failed to read quota record: {exc}") from exc

        if record.has_unlimited_access:
            return AdmissionDecision(allowed=True, credits_remaining=UNLIMITED)

        if record.free_jobs_used < self.free_limit:
            return AdmissionDecision(
                allowed=True,
                credits_remaining=self.free_limit - record.free_jobs_used,
            )

        log.info("quota_exhausted", owner_id=owner_id, used=record.free_jobs_used)
        return AdmissionDecision(allowed=False, credits_remaining=0, requires_upgrade=True)

    async def consume_credit(self, owner_id: str) -> bool:
        """
        Take one free credit with a single compare-and-increment.

        The UPDATE only matches while `free_jobs_used < free_limit`, so
        concurrent uploads can never push usage past the limit. The
        transaction is left open: the caller commits it together with the
        job insert, and a failed insert rolls the credit back. Paid-tier
        owners are not counted.

        Returns:
            True if the owner may create the job, False if the free tier
            is exhausted (the transaction is rolled back)

        Raises:
            QuotaStoreError: if the ledger could not be read or written
        """
        try:
            record = await self.get_or_create_record(owner_id)
            if record.has_unlimited_access:
                return True

            result = await self.db.execute(
                update(QuotaRecord)
                .where(
                    QuotaRecord.owner_id == owner_id,
                    QuotaRecord.free_jobs_used < self.free_limit,
                )
                .values(free_jobs_used=QuotaRecord.free_jobs_used + 1)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise QuotaStoreError(f"Failed to consume credit: {exc}") from exc

        if result.rowcount != 1:
            await self.db.rollback()
            log.info("quota_exhausted", owner_id=owner_id, free_limit=self.free_limit)
            return False
        return True

    async def activate_subscription(self, owner_id: str, plan: Plan) -> QuotaRecord:
        """
        Activate a paid plan for the owner.

        Called by the billing collaborator after a successful payment.
        """
        if plan == Plan.FREE:
            raise ValueError("Cannot activate a subscription on the free plan")

        await self.get_or_create_record(owner_id)
        await self.db.execute(
            update(QuotaRecord)
            .where(QuotaRecord.owner_id == owner_id)
            .values(plan=plan, subscription_status=SubscriptionStatus.ACTIVE)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        log.info("subscription_activated", owner_id=owner_id, plan=plan.value)
        return await self.get_record(owner_id)

    async def get_credit_status(self, owner_id: str) -> CreditStatus:
        """Credit view for display. A missing record reads as a fresh free-tier owner."""
        record = await self.get_record(owner_id)
        if record is None:
            return CreditStatus(
                credits_used=0,
                credits_remaining=self.free_limit,
                plan=Plan.FREE.value,
                has_unlimited_access=False,
            )

        unlimited = record.has_unlimited_access
        return CreditStatus(
            credits_used=record.free_jobs_used,
            credits_remaining=UNLIMITED if unlimited else max(0, self.free_limit - record.free_jobs_used),
            plan=record.plan.value,
            has_unlimited_access=unlimited,
        )
