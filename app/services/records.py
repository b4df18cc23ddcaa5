# backend/app/services/records.py

"""
Record mutations against the store.

Each operation reads the lot's current records, runs the ledger engine, and
writes the lot's full record list back. A rejected entry raises before any
write happens, so the stored lot is left as it was.
"""

import logging
from typing import Any, List, Mapping

from app.core.errors import LedgerError
from app.models.reading import ReadingInput, ReadingRecord
from app.services.ledger import (
    apply_record,
    remove_record,
    validate_and_build_record,
    validate_lot_key,
)
from app.services.lot_store import LotStore

logger = logging.getLogger(__name__)


async def create_record(store: LotStore, lot_key: Any, entry: ReadingInput | Mapping[str, Any]) -> ReadingRecord:
    try:
        lot_key = validate_lot_key(lot_key)
        existing = await store.get_lot(lot_key)
        record = validate_and_build_record(entry, existing, lot_key=lot_key)
    except LedgerError as e:
        logger.warning(f"Rejected new record for lot {lot_key}: {e.code} {e.message}")
        raise
    await store.put_lot_records(lot_key, apply_record(existing, record))
    return record


async def edit_record(
    store: LotStore,
    lot_key: Any,
    record_id: str,
    entry: ReadingInput | Mapping[str, Any],
) -> ReadingRecord:
    try:
        lot_key = validate_lot_key(lot_key)
        existing = await store.get_lot(lot_key)
        record = validate_and_build_record(entry, existing, editing_id=record_id, lot_key=lot_key)
    except LedgerError as e:
        logger.warning(f"Rejected edit of record {record_id} in lot {lot_key}: {e.code} {e.message}")
        raise
    await store.put_lot_records(lot_key, apply_record(existing, record))
    return record


async def delete_record(store: LotStore, lot_key: Any, record_id: str) -> List[ReadingRecord]:
    try:
        lot_key = validate_lot_key(lot_key)
        existing = await store.get_lot(lot_key)
        remaining = remove_record(existing, record_id, lot_key=lot_key)
    except LedgerError as e:
        logger.warning(f"Rejected delete of record {record_id} in lot {lot_key}: {e.code} {e.message}")
        raise
    await store.put_lot_records(lot_key, remaining)
    return remaining
