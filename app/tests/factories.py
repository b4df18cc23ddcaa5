"""In-memory stand-ins for Motor collections and a record factory for tests."""

import copy

from pymongo.errors import OperationFailure

from app.models.reading import ReadingRecord
from app.services.ledger import derive_amounts


def _matches(doc, query):
    for k, v in query.items():
        if k == "$or":
            if not any(_matches(doc, sub) for sub in v):
                return False
        elif doc.get(k) != v:
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeChangeStream:
    def __init__(self, events):
        self._events = list(events)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._events:
            raise StopAsyncIteration
        event = self._events.pop(0)
        if callable(event):
            event = await event()
        return event


class FakeCollection:
    """Just enough of Motor's collection API for the store and identity provider."""

    def __init__(self):
        self._docs = []
        self.writes = 0
        self.change_events = None  # None: server without change streams

    async def find_one(self, query):
        for doc in self._docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None):
        return FakeCursor([copy.deepcopy(d) for d in self._docs if _matches(d, query or {})])

    async def insert_one(self, doc):
        self._docs.append(copy.deepcopy(doc))
        self.writes += 1

    async def replace_one(self, query, doc, upsert=False):
        self.writes += 1
        for i, existing in enumerate(self._docs):
            if _matches(existing, query):
                self._docs[i] = copy.deepcopy(doc)
                return
        if upsert:
            self._docs.append(copy.deepcopy(doc))

    async def update_one(self, query, update, upsert=False):
        self.writes += 1
        for doc in self._docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return
        if upsert:
            doc = dict(query)
            doc.update(update.get("$setOnInsert", {}))
            doc.update(update.get("$set", {}))
            self._docs.append(copy.deepcopy(doc))

    def watch(self):
        if self.change_events is None:
            raise OperationFailure("The $changeStream stage is only supported on replica sets", code=40573)
        return FakeChangeStream(self.change_events)


class FakeDB:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        return self._collections.setdefault(name, FakeCollection())


def make_record(period, previous=0.0, current=None, tariff=1.0, record_id=None, consumption=None):
    if current is None:
        current = previous + (consumption if consumption is not None else 0.0)
    amount, cost = derive_amounts(previous, current, tariff)
    return ReadingRecord(
        id=record_id or f"r-{period}",
        period=period,
        previous_reading=previous,
        current_reading=current,
        consumption=amount,
        tariff=tariff,
        cost=cost,
    )
