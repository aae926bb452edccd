from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    JSON,
    UniqueConstraint,
    Index,
    CheckConstraint,
    func,
    literal_column,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.app.db.base import Base, BigIntPK
from stockledger.app.db.models.core_types import (
    LocationType,
    InventoryStatus,
    TransactionType,
    CycleCountStatus,
    CycleCountType,
    CycleCountLineStatus,
    PIStatus,
    PICountType,
    CountBookStatus,
    CountBookLineStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA (catalog, read-only for the engine) ----------
class Warehouse(Base):
    __tablename__ = "warehouses"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Zone(Base):
    __tablename__ = "zones"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    warehouse: Mapped[Warehouse] = relationship()
    __table_args__ = (UniqueConstraint("warehouse_id", "code", name="uq_zone_warehouse_code"),)


class Location(Base):
    __tablename__ = "locations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)
    zone_id: Mapped[int | None] = mapped_column(ForeignKey("zones.id", ondelete="SET NULL"), index=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[LocationType] = mapped_column(
        Enum(LocationType, name="location_type"),
        default=LocationType.pick,
        nullable=False,
    )
    aisle: Mapped[str | None] = mapped_column(String(16))
    bay: Mapped[str | None] = mapped_column(String(16))
    level: Mapped[str | None] = mapped_column(String(16))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_count_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    warehouse: Mapped[Warehouse] = relationship()
    zone: Mapped[Zone | None] = relationship()
    __table_args__ = (UniqueConstraint("warehouse_id", "code", name="uq_location_warehouse_code"),)


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    uom: Mapped[str] = mapped_column(String(32), default="EA", nullable=False)
    barcode: Mapped[str | None] = mapped_column(String(64), unique=True)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"), nullable=False)
    velocity_code: Mapped[str | None] = mapped_column(String(4), index=True)  # A/B/C...
    reorder_point: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (CheckConstraint("cost >= 0", name="ck_product_cost_nonneg"),)


# ---------- INVENTORY ----------
class InventoryRecord(Base):
    __tablename__ = "inventory"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)

    lot_number: Mapped[str | None] = mapped_column(String(64))
    serial_number: Mapped[str | None] = mapped_column(String(64))
    lpn: Mapped[str | None] = mapped_column(String(64), index=True)
    expiration_date: Mapped[date | None] = mapped_column(Date)

    quantity_on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_allocated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[InventoryStatus] = mapped_column(
        Enum(InventoryStatus, name="inventory_status"),
        default=InventoryStatus.available,
        nullable=False,
    )
    last_counted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    product: Mapped[Product] = relationship()
    location: Mapped[Location] = relationship()

    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
        CheckConstraint("quantity_allocated >= 0", name="ck_inventory_allocated_nonneg"),
        CheckConstraint("quantity_available >= 0", name="ck_inventory_available_nonneg"),
        CheckConstraint(
            "quantity_on_hand = quantity_allocated + quantity_available",
            name="ck_inventory_on_hand_balanced",
        ),
        Index("ix_inventory_warehouse_location", "warehouse_id", "location_id"),
    )


# une seule ligne par position; NULL lot / serial / lpn comptent comme une valeur
Index(
    "ux_inventory_identity",
    InventoryRecord.product_id,
    InventoryRecord.location_id,
    func.coalesce(InventoryRecord.lot_number, literal_column("''")),
    func.coalesce(InventoryRecord.serial_number, literal_column("''")),
    func.coalesce(InventoryRecord.lpn, literal_column("''")),
    unique=True,
)


# ---------- LEDGER (write-once) ----------
class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type"),
        nullable=False,
    )
    inventory_id: Mapped[int] = mapped_column(
        ForeignKey("inventory.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    from_location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"))
    to_location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"))
    lot_number: Mapped[str | None] = mapped_column(String(64))

    # delta signé de l'on-hand du record
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reference_type: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(64))
    reference_number: Mapped[str | None] = mapped_column(String(64))
    correlation_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity_before >= 0", name="ck_inv_txn_before_nonneg"),
        CheckConstraint("quantity_after >= 0", name="ck_inv_txn_after_nonneg"),
        CheckConstraint("quantity_after - quantity_before = quantity", name="ck_inv_txn_delta_consistent"),
        Index("ix_inv_txn_reference", "reference_type", "reference_id"),
        Index("ix_inv_txn_product_time", "product_id", "created_at"),
    )


class OperationKey(Base):
    """Clés d'idempotence réservées par les appels operator."""

    __tablename__ = "operation_keys"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    correlation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # résultat du premier appel, renvoyé tel quel au replay
    result: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- CYCLE COUNTS ----------
class CycleCountCriteria(Base):
    __tablename__ = "cycle_count_criteria"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)
    cycle_class: Mapped[str] = mapped_column(String(8), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    count_frequency_days: Mapped[int] = mapped_column(Integer, nullable=False)
    velocity_codes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    location_types: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    min_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    max_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("warehouse_id", "cycle_class", name="uq_cc_criteria_class"),
        CheckConstraint("count_frequency_days > 0", name="ck_cc_criteria_frequency_pos"),
    )


class CycleCountTolerance(Base):
    __tablename__ = "cycle_count_tolerances"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # 0 = pas de limite sur cet axe
    tolerance_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tolerance_pct: Mapped[Decimal] = mapped_column(Numeric(7, 2), default=Decimal("0"), nullable=False)
    tolerance_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    cycle_classes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    velocity_codes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    auto_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    require_recount: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recount_threshold: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("tolerance_qty >= 0", name="ck_cc_tolerance_qty_nonneg"),
        CheckConstraint("tolerance_pct >= 0", name="ck_cc_tolerance_pct_nonneg"),
        CheckConstraint("tolerance_value >= 0", name="ck_cc_tolerance_value_nonneg"),
        Index("ix_cc_tolerances_warehouse", "warehouse_id", "is_active"),
    )


class CycleCount(Base):
    __tablename__ = "cycle_counts"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    count_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)
    type: Mapped[CycleCountType] = mapped_column(
        Enum(CycleCountType, name="cycle_count_type"),
        default=CycleCountType.standard,
        nullable=False,
    )
    cycle_class: Mapped[str | None] = mapped_column(String(8))
    status: Mapped[CycleCountStatus] = mapped_column(
        Enum(CycleCountStatus, name="cycle_count_status"),
        default=CycleCountStatus.new,
        nullable=False,
    )

    variance_threshold_qty: Mapped[int | None] = mapped_column(Integer)
    variance_threshold_pct: Mapped[Decimal | None] = mapped_column(Numeric(7, 2))
    variance_threshold_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    total_locations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    counted_locations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discrepancies: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    scheduled_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    warehouse: Mapped[Warehouse] = relationship()
    lines: Mapped[list["CycleCountLine"]] = relationship(
        back_populates="cycle_count",
        cascade="all, delete-orphan",
        order_by="CycleCountLine.id",
    )

    __table_args__ = (Index("ix_cycle_counts_warehouse_status", "warehouse_id", "status"),)


class CycleCountLine(Base):
    __tablename__ = "cycle_count_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    cycle_count_id: Mapped[int] = mapped_column(
        ForeignKey("cycle_counts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inventory_id: Mapped[int | None] = mapped_column(ForeignKey("inventory.id", ondelete="SET NULL"))
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    lot_number: Mapped[str | None] = mapped_column(String(64))
    lpn: Mapped[str | None] = mapped_column(String(64))

    system_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_quantity: Mapped[int | None] = mapped_column(Integer)
    variance: Mapped[int | None] = mapped_column(Integer)
    variance_pct: Mapped[Decimal | None] = mapped_column(Numeric(9, 2))
    recount_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recount_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[CycleCountLineStatus] = mapped_column(
        Enum(CycleCountLineStatus, name="cycle_count_line_status"),
        default=CycleCountLineStatus.pending,
        nullable=False,
    )
    counted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    counted_by: Mapped[str | None] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)

    cycle_count: Mapped[CycleCount] = relationship(back_populates="lines")
    location: Mapped[Location] = relationship()
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("system_quantity >= 0", name="ck_cc_line_system_nonneg"),
        CheckConstraint("counted_quantity IS NULL OR counted_quantity >= 0", name="ck_cc_line_counted_nonneg"),
    )


# ---------- PHYSICAL INVENTORY ----------
class PhysicalInventory(Base):
    __tablename__ = "physical_inventories"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    pi_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    count_type: Mapped[PICountType] = mapped_column(
        Enum(PICountType, name="pi_count_type"),
        default=PICountType.full,
        nullable=False,
    )
    status: Mapped[PIStatus] = mapped_column(
        Enum(PIStatus, name="pi_status"),
        default=PIStatus.setup,
        nullable=False,
    )
    blind_count: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    locations_per_book: Mapped[int] = mapped_column(Integer, nullable=False)
    variance_threshold_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    variance_threshold_pct: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)
    variance_threshold_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    zone_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    total_books: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_locations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    adjustments_posted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_adjustment_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(64))
    cancelled_by: Mapped[str | None] = mapped_column(String(64))
    cancel_reason: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    warehouse: Mapped[Warehouse] = relationship()
    books: Mapped[list["CountBook"]] = relationship(
        back_populates="physical_inventory",
        cascade="all, delete-orphan",
        order_by="CountBook.book_number",
    )

    __table_args__ = (
        CheckConstraint("locations_per_book > 0", name="ck_pi_locations_per_book_pos"),
    )


class CountBook(Base):
    __tablename__ = "count_books"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    physical_inventory_id: Mapped[int] = mapped_column(
        ForeignKey("physical_inventories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    book_number: Mapped[str] = mapped_column(String(32), nullable=False)
    zone_id: Mapped[int | None] = mapped_column(ForeignKey("zones.id", ondelete="SET NULL"))
    status: Mapped[CountBookStatus] = mapped_column(
        Enum(CountBookStatus, name="count_book_status"),
        default=CountBookStatus.new,
        nullable=False,
    )
    assigned_to: Mapped[str | None] = mapped_column(String(64))
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    total_locations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    counted_locations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[str | None] = mapped_column(String(64))

    physical_inventory: Mapped[PhysicalInventory] = relationship(back_populates="books")
    zone: Mapped[Zone | None] = relationship()
    lines: Mapped[list["CountBookLine"]] = relationship(
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="CountBookLine.line_number",
    )

    __table_args__ = (
        UniqueConstraint("physical_inventory_id", "book_number", name="uq_count_book_number"),
    )


class CountBookLine(Base):
    __tablename__ = "count_book_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    count_book_id: Mapped[int] = mapped_column(
        ForeignKey("count_books.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"))
    inventory_id: Mapped[int | None] = mapped_column(ForeignKey("inventory.id", ondelete="SET NULL"))
    lot_number: Mapped[str | None] = mapped_column(String(64))
    lpn: Mapped[str | None] = mapped_column(String(64))

    # system_quantity toujours conservée; expected_quantity = ce que voit le compteur
    system_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expected_quantity: Mapped[int | None] = mapped_column(Integer)
    counted_quantity: Mapped[int | None] = mapped_column(Integer)
    recount_quantity: Mapped[int | None] = mapped_column(Integer)
    variance: Mapped[int | None] = mapped_column(Integer)
    variance_pct: Mapped[Decimal | None] = mapped_column(Numeric(9, 2))
    variance_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    out_of_book: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[CountBookLineStatus] = mapped_column(
        Enum(CountBookLineStatus, name="count_book_line_status"),
        default=CountBookLineStatus.pending,
        nullable=False,
    )
    counted_by: Mapped[str | None] = mapped_column(String(64))
    counted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    recounted_by: Mapped[str | None] = mapped_column(String(64))
    recounted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    book: Mapped[CountBook] = relationship(back_populates="lines")
    location: Mapped[Location] = relationship()
    product: Mapped[Product | None] = relationship()

    @property
    def final_quantity(self) -> int | None:
        """Comptage retenu: le recomptage s'il existe, sinon le premier comptage."""
        if self.recount_quantity is not None:
            return self.recount_quantity
        return self.counted_quantity

    __table_args__ = (
        CheckConstraint("system_quantity >= 0", name="ck_cb_line_system_nonneg"),
        CheckConstraint("counted_quantity IS NULL OR counted_quantity >= 0", name="ck_cb_line_counted_nonneg"),
        CheckConstraint("recount_quantity IS NULL OR recount_quantity >= 0", name="ck_cb_line_recount_nonneg"),
    )
