import enum

class LocationType(str, enum.Enum):
    bulk = "BULK"
    pick = "PICK"
    reserve = "RESERVE"
    dock = "DOCK"
    staging = "STAGING"
    quarantine = "QUARANTINE"

class InventoryStatus(str, enum.Enum):
    available = "AVAILABLE"
    allocated = "ALLOCATED"
    on_hold = "ON_HOLD"
    damaged = "DAMAGED"
    qc_hold = "QC_HOLD"
    quarantine = "QUARANTINE"

class TransactionType(str, enum.Enum):
    receive = "RECEIVE"
    adjust_in = "ADJUST_IN"
    adjust_out = "ADJUST_OUT"
    transfer = "TRANSFER"
    move = "MOVE"
    consume = "CONSUME"
    produce = "PRODUCE"
    cycle_count = "CYCLE_COUNT"
    physical_inventory = "PHYSICAL_INVENTORY"
    status_change = "STATUS_CHANGE"
    scrap = "SCRAP"
    allocate = "ALLOCATE"
    deallocate = "DEALLOCATE"

class ReferenceType(str, enum.Enum):
    adjustment = "ADJUSTMENT"
    transfer = "TRANSFER"
    move = "MOVE"
    receipt = "RECEIPT"
    allocation = "ALLOCATION"
    status_change = "STATUS_CHANGE"
    cycle_count = "CYCLE_COUNT"
    physical_inventory = "PHYSICAL_INVENTORY"

class CycleCountStatus(str, enum.Enum):
    new = "NEW"
    in_progress = "IN_PROGRESS"
    pending_approval = "PENDING_APPROVAL"
    completed = "COMPLETED"
    cancelled = "CANCELLED"

class CycleCountType(str, enum.Enum):
    standard = "STANDARD"
    blind = "BLIND"
    criteria = "CRITERIA"
    scheduled = "SCHEDULED"

class CycleCountLineStatus(str, enum.Enum):
    pending = "PENDING"
    counted = "COUNTED"
    adjusted = "ADJUSTED"
    approved = "APPROVED"

class PIStatus(str, enum.Enum):
    setup = "SETUP"
    scheduled = "SCHEDULED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    cancelled = "CANCELLED"

class PICountType(str, enum.Enum):
    full = "FULL"
    partial = "PARTIAL"

class CountBookStatus(str, enum.Enum):
    new = "NEW"
    assigned = "ASSIGNED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"

class CountBookLineStatus(str, enum.Enum):
    pending = "PENDING"
    counted = "COUNTED"
    recount_required = "RECOUNT_REQUIRED"
    approved = "APPROVED"
    adjusted = "ADJUSTED"

class EventKind(str, enum.Enum):
    adjustment_posted = "ADJUSTMENT_POSTED"
    transfer_posted = "TRANSFER_POSTED"
    move_posted = "MOVE_POSTED"
    receipt_posted = "RECEIPT_POSTED"
    low_stock = "LOW_STOCK"
