"""
Exceptions typées levées par le moteur d'inventaire.

Chaque classe porte un ``code`` lisible par machine et garde son contexte
en attributs: la couche API et les tools le remontent sans parser le
message.

    InventoryEngineError
    |
    +-- QuantityError
    |   +-- InvalidQuantityError
    |   +-- NegativeInventoryError
    |   +-- InsufficientAvailableError
    |   +-- HasAllocationError
    |
    +-- RecordNotFoundError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- EmptyScopeError
    |   +-- NoLocationsError
    |   +-- LinesPendingError
    |   +-- UncountedLinesError
    |   +-- IncompleteBooksError
    |   +-- RecountRequiredError
    |   +-- BatchPostingError
    |
    +-- IdempotencyConflictError
    +-- LedgerImmutableError
    +-- PositionOccupiedError
"""

from __future__ import annotations

from typing import Any


class InventoryEngineError(Exception):
    code: str = "INVENTORY_ENGINE_ERROR"

    def details(self) -> dict[str, Any]:
        """Contexte structuré (attributs publics de l'instance)."""
        out: dict[str, Any] = {}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            if isinstance(value, BaseException):
                value = getattr(value, "code", type(value).__name__)
            out[key] = value
        return out


# ---------- quantities ----------
class QuantityError(InventoryEngineError):
    code: str = "QUANTITY_ERROR"


class InvalidQuantityError(QuantityError):
    code: str = "INVALID_QUANTITY"

    def __init__(self, message: str):
        super().__init__(message)


class NegativeInventoryError(QuantityError):
    code: str = "NEGATIVE_INVENTORY"

    def __init__(self, record_id: int, on_hand: int, delta: int):
        self.record_id = record_id
        self.on_hand = on_hand
        self.delta = delta
        super().__init__(
            f"Adjustment of {delta} would take record {record_id} below zero (on_hand={on_hand})"
        )


class InsufficientAvailableError(QuantityError):
    code: str = "INSUFFICIENT_AVAILABLE"

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient available stock (available={available}, requested={requested})")


class HasAllocationError(QuantityError):
    code: str = "HAS_ALLOCATION"

    def __init__(self, record_id: int, allocated: int):
        self.record_id = record_id
        self.allocated = allocated
        super().__init__(f"Record {record_id} has {allocated} allocated units and cannot be moved")


# ---------- lookups ----------
class RecordNotFoundError(InventoryEngineError):
    code: str = "NOT_FOUND"

    def __init__(self, entity: str, id: Any):
        self.entity = entity
        self.id = id
        super().__init__(f"{entity} not found: {id}")


# ---------- workflows ----------
class WorkflowError(InventoryEngineError):
    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    code: str = "INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot go from {current} to {target}")


class EmptyScopeError(WorkflowError):
    code: str = "EMPTY_SCOPE"

    def __init__(self, message: str = "No inventory matches the count scope"):
        super().__init__(message)


class NoLocationsError(WorkflowError):
    code: str = "NO_LOCATIONS"

    def __init__(self, message: str = "No active locations in scope"):
        super().__init__(message)


class LinesPendingError(WorkflowError):
    code: str = "LINES_PENDING"

    def __init__(self, pending_count: int):
        self.pending_count = pending_count
        super().__init__(f"{pending_count} lines still pending")


class UncountedLinesError(WorkflowError):
    code: str = "UNCOUNTED_LINES"

    def __init__(self, uncounted_count: int):
        self.uncounted_count = uncounted_count
        super().__init__(f"{uncounted_count} lines not counted")


class IncompleteBooksError(WorkflowError):
    code: str = "INCOMPLETE_BOOKS"

    def __init__(self, book_numbers: list[str]):
        self.book_numbers = list(book_numbers)
        super().__init__(f"{len(self.book_numbers)} count books not completed: {', '.join(self.book_numbers)}")


class RecountRequiredError(WorkflowError):
    code: str = "RECOUNT_REQUIRED"

    def __init__(self, line_id: int):
        self.line_id = line_id
        super().__init__(f"Line {line_id} requires a recount before approval")


class BatchPostingError(WorkflowError):
    code: str = "BATCH_POSTING_FAILED"

    def __init__(self, line_id: int, cause: BaseException):
        self.line_id = line_id
        self.cause = cause
        super().__init__(f"Posting failed at line {line_id}: {cause}")


# ---------- integrity ----------
class IdempotencyConflictError(InventoryEngineError):
    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, operation: str, existing_operation: str):
        self.idempotency_key = idempotency_key
        self.operation = operation
        self.existing_operation = existing_operation
        super().__init__(
            f"Idempotency-Key {idempotency_key} already used for {existing_operation}, not {operation}"
        )


class LedgerImmutableError(InventoryEngineError):
    code: str = "LEDGER_IMMUTABLE"

    def __init__(self, entry_id: int | None, action: str):
        self.entry_id = entry_id
        self.action = action
        super().__init__(f"Ledger entry {entry_id} cannot be {action}")


class PositionOccupiedError(InventoryEngineError):
    code: str = "POSITION_OCCUPIED"

    def __init__(self, record_id: int, location_id: int, existing_id: int):
        self.record_id = record_id
        self.location_id = location_id
        self.existing_id = existing_id
        super().__init__(
            f"Record {record_id} cannot move to location {location_id}: "
            f"record {existing_id} already holds that position with another status"
        )
