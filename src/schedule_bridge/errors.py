"""
Error taxonomy for the schedule bridge.

Ledger errors abort the single call that raised them with no state change.
Relay errors classify a failed destination submission as either retryable
(``TransientError``) or in need of operator attention (``PermanentError``).
"""


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class InvalidArgument(BridgeError):
    """Caller input was rejected before any state was touched."""


class ArgumentLengthMismatch(InvalidArgument):
    """Parallel batch arrays differ in length, or the batch is empty."""


class NotFound(BridgeError):
    """No record exists for the given identifier."""

    def __init__(self, kind: str, identifier: int):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class AlreadyExecuted(BridgeError):
    """The scheduled payment was already executed."""

    def __init__(self, payment_id: int):
        super().__init__(f"Payment {payment_id} already executed")
        self.payment_id = payment_id


class AlreadyBridged(BridgeError):
    """The schedule request was already marked as bridged."""

    def __init__(self, origin_id: int):
        super().__init__(f"Schedule request {origin_id} already bridged")
        self.origin_id = origin_id


class NotReady(BridgeError):
    """The readiness gate rejected execution: scheduled time not reached."""

    def __init__(self, payment_id: int, scheduled_time: int, now: int):
        super().__init__(
            f"Payment {payment_id} not ready: scheduled for {scheduled_time}, now {now} "
            f"({scheduled_time - now}s remaining)"
        )
        self.payment_id = payment_id
        self.scheduled_time = scheduled_time
        self.now = now


class Unauthorized(BridgeError):
    """Caller identity is not allowed to perform the operation."""


class RelayError(BridgeError):
    """Base class for relay-internal submission failures."""


class TransientError(RelayError):
    """Network or timeout failure; always safe to retry."""


class PermanentError(RelayError):
    """Destination ledger rejected the submission; retrying will not help."""
