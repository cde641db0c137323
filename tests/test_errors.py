# tests/test_errors.py
from deskledger.domain.errors import (
    InsufficientPositionAmountError,
    InvalidStateError,
    TradeNotFoundError,
    UnbalancedEntryError,
    ValidationError,
    error_status,
)


def test_error_status_mapping():
    assert error_status(TradeNotFoundError(7)) == 404
    assert error_status(ValidationError("bad amount")) == 400
    assert error_status(InsufficientPositionAmountError(3, "AED", 10.0, 4.0)) == 400
    assert error_status(UnbalancedEntryError("debits != credits")) == 500
    assert error_status(KeyError("boom")) == 500


def test_error_payload():
    err = InsufficientPositionAmountError(3, "AED", 10.0, 4.0)

    assert isinstance(err, InvalidStateError)
    assert err.to_dict() == {
        "code": "INSUFFICIENT_POSITION_AMOUNT",
        "message": "Insufficient amount in position 3: requested 10.0, remaining 4.0",
        "details": {"currency": "AED", "requested": 10.0, "available": 4.0, "position_id": 3},
    }
