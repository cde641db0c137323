# deskledger/domain/errors.py
"""
Ledger error taxonomy.

NOT FOUND    - trade, receipt, position, counterparty or bank account absent (404)
INVALID STATE - operation not allowed in the current state, incl. inventory (400)
VALIDATION   - malformed request values (400)
INVARIANT    - ledger invariant would be broken; fatal, transaction aborted (500)
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all core ledger failures."""

    http_status = 500
    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# ========== NOT FOUND ==========

class NotFoundError(LedgerError):
    http_status = 404
    code = "NOT_FOUND"


class TradeNotFoundError(NotFoundError):
    code = "TRADE_NOT_FOUND"

    def __init__(self, trade_id):
        super().__init__(f"Trade with ID {trade_id} not found", {"trade_id": trade_id})


class ReceiptNotFoundError(NotFoundError):
    code = "RECEIPT_NOT_FOUND"

    def __init__(self, receipt_id):
        super().__init__(f"Receipt {receipt_id} not found", {"receipt_id": receipt_id})


class PositionNotFoundError(NotFoundError):
    code = "POSITION_NOT_FOUND"

    def __init__(self, position_id):
        super().__init__(f"Position {position_id} not found", {"position_id": position_id})


class CounterpartyNotFoundError(NotFoundError):
    code = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_id):
        super().__init__(f"Trading party {counterparty_id} not found", {"counterparty_id": counterparty_id})


class BankAccountNotFoundError(NotFoundError):
    code = "BANK_ACCOUNT_NOT_FOUND"

    def __init__(self, account_id):
        super().__init__(f"Bank account {account_id} not found", {"account_id": account_id})


# ========== INVALID STATE ==========

class InvalidStateError(LedgerError):
    http_status = 400
    code = "INVALID_STATE"


class ReceiptAlreadyDeletedError(InvalidStateError):
    code = "RECEIPT_ALREADY_DELETED"

    def __init__(self, receipt_id):
        super().__init__(f"Receipt {receipt_id} is already deleted", {"receipt_id": receipt_id})


class ReceiptNotDeletedError(InvalidStateError):
    code = "RECEIPT_NOT_DELETED"

    def __init__(self, receipt_id):
        super().__init__(f"Receipt {receipt_id} is not deleted", {"receipt_id": receipt_id})


class ReceiptAlreadySettledError(InvalidStateError):
    code = "RECEIPT_ALREADY_SETTLED"

    def __init__(self, receipt_id):
        super().__init__(
            f"Receipt {receipt_id} already has settlement allocations; reprocess instead",
            {"receipt_id": receipt_id},
        )


class InactiveBankAccountError(InvalidStateError):
    code = "BANK_ACCOUNT_INACTIVE"

    def __init__(self, account_id):
        super().__init__(f"Receiver bank account {account_id} is not active", {"account_id": account_id})


class PartyInUseError(InvalidStateError):
    code = "PARTY_IN_USE"


class BankAccountInUseError(InvalidStateError):
    code = "BANK_ACCOUNT_IN_USE"


class InsufficientInventoryError(InvalidStateError):
    code = "INSUFFICIENT_INVENTORY"

    def __init__(self, currency, requested: float, available: float, message: Optional[str] = None):
        super().__init__(
            message or f"Insufficient {currency} inventory: requested {requested}, available {available}",
            {"currency": str(currency), "requested": requested, "available": available},
        )


class InsufficientPositionAmountError(InsufficientInventoryError):
    code = "INSUFFICIENT_POSITION_AMOUNT"

    def __init__(self, position_id, currency, requested: float, available: float):
        super().__init__(
            currency,
            requested,
            available,
            message=f"Insufficient amount in position {position_id}: requested {requested}, remaining {available}",
        )
        self.details["position_id"] = position_id


# ========== VALIDATION ==========

class ValidationError(LedgerError):
    http_status = 400
    code = "VALIDATION_ERROR"


# ========== INVARIANTS ==========

class InvariantViolationError(LedgerError):
    code = "INVARIANT_VIOLATION"


class UnbalancedEntryError(InvariantViolationError):
    code = "UNBALANCED_ENTRY"


def error_status(exc: BaseException) -> int:
    """HTTP-equivalent status for any exception raised out of the core."""
    if isinstance(exc, LedgerError):
        return exc.http_status
    return 500
