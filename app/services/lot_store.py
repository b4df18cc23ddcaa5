# backend/app/services/lot_store.py

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from pymongo.errors import OperationFailure

from app.core.config import settings
from app.models.reading import ReadingRecord
from app.services.ledger import normalize_record

logger = logging.getLogger(__name__)

LedgerSnapshot = Dict[str, List[ReadingRecord]]


class LotStore:
    """
    Thin wrapper over the lots collection: one document per lot,
    ``{"_id": lot_key, "records": [...]}``.

    Writes always replace a lot's whole record list in one replace_one, so a
    lot is never partially committed. Two clients editing the same lot at
    once race and the later write wins; there is no merge or version check.
    """

    def __init__(self, database: Any, collection_name: Optional[str] = None):
        self.collection = database[collection_name or settings.LOTS_COLLECTION]

    @staticmethod
    def _records_from_doc(doc: Dict[str, Any]) -> List[ReadingRecord]:
        lot_key = str(doc.get("_id"))
        records = []
        for raw in doc.get("records") or []:
            record = normalize_record(raw, lot_key=lot_key)
            if record is not None:
                records.append(record)
        return records

    async def get_all(self) -> LedgerSnapshot:
        docs = await self.collection.find({}).to_list(length=None)
        return {str(doc["_id"]): self._records_from_doc(doc) for doc in docs}

    async def get_lot(self, lot_key: str) -> List[ReadingRecord]:
        doc = await self.collection.find_one({"_id": lot_key})
        if not doc:
            return []
        return self._records_from_doc(doc)

    async def put_lot_records(self, lot_key: str, records: List[ReadingRecord]) -> None:
        await self.collection.replace_one(
            {"_id": lot_key},
            {"_id": lot_key, "records": [r.model_dump() for r in records]},
            upsert=True,
        )
        logger.info(f"Lot {lot_key} saved with {len(records)} records")

    async def subscribe(self, poll_seconds: Optional[float] = None) -> AsyncIterator[LedgerSnapshot]:
        """
        Yield the full ledger now, then again after every remote change.

        Uses a change stream when the server supports one (replica sets,
        Atlas); standalone servers fall back to polling.
        """
        snapshot = await self.get_all()
        yield snapshot

        try:
            async with self.collection.watch() as stream:
                async for _change in stream:
                    yield await self.get_all()
            return
        except OperationFailure as e:
            logger.warning(f"Change streams unavailable ({e.code}), polling lots instead")

        interval = poll_seconds if poll_seconds is not None else settings.LEDGER_POLL_SECONDS
        last = _fingerprint(snapshot)
        while True:
            await asyncio.sleep(interval)
            snapshot = await self.get_all()
            current = _fingerprint(snapshot)
            if current != last:
                last = current
                yield snapshot


def _fingerprint(snapshot: LedgerSnapshot):
    return {key: [r.model_dump() for r in records] for key, records in snapshot.items()}
