# backend/app/api/lots.py

import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, HTTPException, status
from fastapi.encoders import jsonable_encoder
from typing import Dict, Any, List
import logging

from app.core.config import settings
from app.core.database import get_db
from app.api.auth import get_current_session, get_identity_provider, require_capability, session_from_token
from app.models.reading import LotAnalysis, LotDetail, PeriodSuggestion, ReadingInput, ReadingRecord
from app.models.user import Session
from app.services import ledger, records
from app.services.identity import IdentityProvider
from app.services.lot_store import LotStore

router = APIRouter()
logger = logging.getLogger(__name__)


async def get_lot_store(database=Depends(get_db)) -> LotStore:
    return LotStore(database)


@router.get("")
async def list_lots(
    session: Session = Depends(get_current_session),
    store: LotStore = Depends(get_lot_store),
):
    """Every known lot with its record count and latest period."""
    snapshot = await store.get_all()
    lots = []
    for lot_key in sorted(snapshot.keys(), key=ledger.lot_sort_key):
        recs = snapshot[lot_key]
        lots.append({
            "lot_key": lot_key,
            "record_count": len(recs),
            "latest_period": max((r.period for r in recs), default=None),
        })
    return {"count": len(lots), "lots": lots}


@router.get("/{lot_key}", response_model=LotDetail)
async def get_lot(
    lot_key: str,
    session: Session = Depends(get_current_session),
    store: LotStore = Depends(get_lot_store),
):
    """Records of one lot in chronological order, plus the pre-fill for the next entry."""
    lot_key = ledger.validate_lot_key(lot_key)
    recs = await store.get_lot(lot_key)
    return LotDetail(
        lot_key=lot_key,
        records=ledger.sort_records(recs),
        suggestion=ledger.next_period_suggestion(recs),
    )


@router.get("/{lot_key}/suggestion", response_model=PeriodSuggestion)
async def get_suggestion(
    lot_key: str,
    session: Session = Depends(get_current_session),
    store: LotStore = Depends(get_lot_store),
):
    lot_key = ledger.validate_lot_key(lot_key)
    return ledger.next_period_suggestion(await store.get_lot(lot_key))


@router.post("/{lot_key}/records", response_model=ReadingRecord, status_code=status.HTTP_201_CREATED)
async def create_record(
    lot_key: str,
    entry: ReadingInput,
    session: Session = Depends(require_capability("can_create")),
    store: LotStore = Depends(get_lot_store),
):
    record = await records.create_record(store, lot_key, entry)
    logger.info(f"{session.identity.username} added {record.period} to lot {lot_key}")
    return record


@router.put("/{lot_key}/records/{record_id}", response_model=ReadingRecord)
async def edit_record(
    lot_key: str,
    record_id: str,
    entry: ReadingInput,
    session: Session = Depends(require_capability("can_edit")),
    store: LotStore = Depends(get_lot_store),
):
    record = await records.edit_record(store, lot_key, record_id, entry)
    logger.info(f"{session.identity.username} updated record {record_id} of lot {lot_key}")
    return record


@router.delete("/{lot_key}/records/{record_id}")
async def delete_record(
    lot_key: str,
    record_id: str,
    session: Session = Depends(require_capability("can_edit")),
    store: LotStore = Depends(get_lot_store),
):
    remaining = await records.delete_record(store, lot_key, record_id)
    logger.info(f"{session.identity.username} removed record {record_id} from lot {lot_key}")
    return {"success": True, "deleted": record_id, "remaining": len(remaining)}


@router.get("/{lot_key}/analysis", response_model=LotAnalysis)
async def get_analysis(
    lot_key: str,
    session: Session = Depends(require_capability("can_view_analysis")),
    store: LotStore = Depends(get_lot_store),
):
    """Chart series in liters and the month-over-month trend."""
    lot_key = ledger.validate_lot_key(lot_key)
    recs = await store.get_lot(lot_key)
    return LotAnalysis(
        lot_key=lot_key,
        series=ledger.consumption_series(recs),
        trend=ledger.consumption_trend(recs),
    )


def _ledger_message(snapshot: Dict[str, List[ReadingRecord]], session: Session) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "type": "ledger",
        "lots": {key: ledger.sort_records(recs) for key, recs in snapshot.items()},
    }
    if session.capabilities.can_view_dashboard:
        message["dashboard"] = ledger.compute_dashboard_aggregates(snapshot, top_n=settings.TOP_N)
    return jsonable_encoder(message)


@router.websocket("/ws")
async def stream_ledger(
    websocket: WebSocket,
    token: str = "",
    store: LotStore = Depends(get_lot_store),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    """Push the full ledger on connect and after every change."""
    try:
        session = await session_from_token(token, provider)
    except HTTPException as e:
        await websocket.close(code=4401, reason=str(e.detail))
        return

    await websocket.accept()
    logger.info(f"Ledger stream opened for {session.identity.username}")

    stream = store.subscribe()

    async def push():
        async for snapshot in stream:
            await websocket.send_json(_ledger_message(snapshot, session))

    async def wait_for_disconnect():
        # clients only listen; anything they send is ignored
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    tasks = {asyncio.create_task(push()), asyncio.create_task(wait_for_disconnect())}
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await stream.aclose()

    for task in done:
        exc = task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            raise exc
    logger.info(f"Ledger stream closed for {session.identity.username}")
