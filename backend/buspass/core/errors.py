"""Exceptions raised by the core.

Scan rejections (blocked, limit exceeded, insufficient balance, unknown
pass) are not exceptions: they come back as ``ScanOutcome`` values. Illegal
stop transitions are ignored, not raised.
"""


class BusPassError(Exception):
    """Base class for core errors."""


class TripAlreadyActive(BusPassError):
    """A bus already has an active trip."""

    code = "ALREADY_ACTIVE"

    def __init__(self, bus_id: str, trip_id: str) -> None:
        super().__init__(f"Bus {bus_id} already has active trip {trip_id}")
        self.bus_id = bus_id
        self.trip_id = trip_id


class StoreUnavailable(BusPassError):
    """A repository or notifier call failed or timed out. Safe to retry."""

    retryable = True

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        detail = f"{operation} failed"
        if cause is not None:
            detail = f"{detail}: {type(cause).__name__}: {cause}"
        super().__init__(detail)
        self.operation = operation


class InsufficientFunds(BusPassError):
    """A balance decrement would take the wallet below zero."""

    def __init__(self, holder_id: str, balance, amount) -> None:
        super().__init__(f"Holder {holder_id}: balance {balance} < {amount}")
        self.holder_id = holder_id
        self.balance = balance
        self.amount = amount
