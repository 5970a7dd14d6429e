"""Error types raised by the risk engine."""


class GiftGuardError(Exception):
    """Base class for all engine errors."""


class StoreError(GiftGuardError):
    """A persistent store read or write failed.

    The evaluation or review that hit it is aborted and the error reaches the
    caller. Only ConcurrentUpdateError is retried, by the transaction evaluator.
    """


class RecordNotFoundError(StoreError):
    """A user, session or transaction does not exist in the store."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class InputError(GiftGuardError, ValueError):
    """A candidate transaction is malformed and was rejected before any rule ran."""


class ConcurrentUpdateError(StoreError):
    """A row changed between read and write in another unit of work.

    Raised instead of silently overwriting the other writer's update.
    """

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key} was modified concurrently")
        self.kind = kind
        self.key = key
