# backend/app/api/dashboard.py

from fastapi import APIRouter, Depends

from app.core.config import settings
from app.api.auth import require_capability
from app.api.lots import get_lot_store
from app.models.reading import DashboardAggregates
from app.models.user import Session
from app.services.ledger import compute_dashboard_aggregates
from app.services.lot_store import LotStore

router = APIRouter()


@router.get("", response_model=DashboardAggregates)
async def get_dashboard(
    session: Session = Depends(require_capability("can_view_dashboard")),
    store: LotStore = Depends(get_lot_store),
):
    """Fleet-wide figures for the most recent period with any reading."""
    snapshot = await store.get_all()
    return compute_dashboard_aggregates(snapshot, top_n=settings.TOP_N)
