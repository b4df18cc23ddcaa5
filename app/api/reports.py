# backend/app/api/reports.py

from fastapi import APIRouter, Depends
from fastapi.responses import Response
import logging

from app.api.auth import require_capability
from app.api.lots import get_lot_store
from app.models.user import Session
from app.services import report_export
from app.services.ledger import sort_records, validate_lot_key
from app.services.lot_store import LotStore

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/lots/{lot_key}/csv")
async def export_lot_csv(
    lot_key: str,
    session: Session = Depends(require_capability("can_export")),
    store: LotStore = Depends(get_lot_store),
):
    """Download a lot's reading history as ';'-separated CSV."""
    lot_key = validate_lot_key(lot_key)
    content = report_export.build_csv(lot_key, sort_records(await store.get_lot(lot_key)))
    logger.info(f"CSV export of lot {lot_key} by {session.identity.username}")
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{report_export.csv_filename(lot_key)}"'},
    )


@router.get("/lots/{lot_key}/pdf")
async def export_lot_pdf(
    lot_key: str,
    session: Session = Depends(require_capability("can_export")),
    store: LotStore = Depends(get_lot_store),
):
    """Download the lot's consumption statement as PDF."""
    lot_key = validate_lot_key(lot_key)
    content = report_export.build_pdf(lot_key, await store.get_lot(lot_key))
    logger.info(f"PDF export of lot {lot_key} by {session.identity.username}")
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{report_export.pdf_filename(lot_key)}"'},
    )
