# backend/app/core/errors.py

"""Domain errors raised by the ledger engine and its services.

Each error is terminal for the operation that raised it: nothing has been
written when one propagates. ``status_code`` is the HTTP status the API
layer answers with.
"""


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def code(self) -> str:
        return type(self).__name__


class IncompleteInput(LedgerError):
    """A required reading field is missing, non-numeric or out of range."""

    def __init__(self, field: str, reason: str = "is required and must be numeric"):
        self.field = field
        super().__init__(f"{field} {reason}")


class NegativeConsumption(LedgerError):
    """The current reading is lower than the previous one."""

    def __init__(self, previous_reading: float, current_reading: float):
        self.previous_reading = previous_reading
        self.current_reading = current_reading
        super().__init__(
            f"current reading {current_reading} is lower than previous reading {previous_reading}"
        )


class DuplicatePeriod(LedgerError):
    status_code = 409

    def __init__(self, lot_key: str, period: str):
        self.lot_key = lot_key
        self.period = period
        super().__init__(f"Lot {lot_key} already has a record for {period}")


class InvalidLotKey(LedgerError):
    def __init__(self, lot_key):
        self.lot_key = lot_key
        super().__init__(f"Invalid lot number: '{lot_key}'")


class RecordNotFound(LedgerError):
    status_code = 404

    def __init__(self, lot_key: str, record_id: str):
        self.lot_key = lot_key
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found in lot {lot_key}")


class AuthError(LedgerError):
    status_code = 401

    def __init__(self, message: str = "Invalid username/email or password"):
        super().__init__(message)


class ExportError(LedgerError):
    """A report could not be produced (no records, or the PDF backend failed)."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)
