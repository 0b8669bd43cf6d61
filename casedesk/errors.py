"""Error taxonomy shared by the local store, the lock coordinator and the sync engine.

Entity-level errors (NotFound, ConstraintViolation, InvalidTransition,
Unauthorized) propagate to whoever called the mutating operation. Sync-level
errors (SyncTransportError, Unauthenticated) are caught by the sync engine and
folded into its cycle summary.
"""


class NotFound(LookupError):
    pass


class ConstraintViolation(ValueError):
    pass


class InvalidTransition(ValueError):
    pass


class Unauthorized(PermissionError):
    pass


class Unauthenticated(PermissionError):
    pass


class SyncTransportError(RuntimeError):
    pass
