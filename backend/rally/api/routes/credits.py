"""
Operator endpoints for the Rally Credits ledger.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rally.core.security import require_admin_key
from rally.db.session import get_db
from rally.schemas.settlement import ReconciliationReport
from rally.services.reconciliation_service import reconcile_pending_debits

router = APIRouter(prefix="/credits", tags=["Credits"])


@router.post("/reconcile", response_model=ReconciliationReport, dependencies=[Depends(require_admin_key)])
async def reconcile(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Retry credit debits that failed after a successful payment."""
    return await reconcile_pending_debits(db, limit=limit)
