"""
Credit API routes.

Read-only view of the caller's free-tier usage and plan.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docai.config import settings
from docai.dependencies.auth import TokenPayload
from docai.dependencies.rate_limit import rate_limit
from docai.dependencies.services import get_db
from docai.services.quota_service import QuotaService


router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/status", response_model=dict)
async def get_credit_status(
    owner: TokenPayload = Depends(rate_limit("read")),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the caller's credit status.

    creditsRemaining is -1 for owners with an active paid plan.
    """
    status = await QuotaService(db, free_limit=settings.FREE_CREDIT_LIMIT).get_credit_status(owner.sub)
    return {
        "creditsUsed": status.credits_used,
        "creditsRemaining": status.credits_remaining,
        "freeLimit": settings.FREE_CREDIT_LIMIT,
        "plan": status.plan,
        "hasUnlimitedAccess": status.has_unlimited_access,
    }
