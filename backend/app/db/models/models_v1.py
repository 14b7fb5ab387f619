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
    UniqueConstraint,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, BigIntPK
from backend.app.db.models.core_types import (
    ListStatus,
    OrderStatus,
    TransferStatus,
    SequenceKind,
)


ORDER_STATUS_TYPE = Enum(OrderStatus, name="order_status")
TRANSFER_STATUS_TYPE = Enum(TransferStatus, name="transfer_status")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA ----------
class Station(Base):
    __tablename__ = "stations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    city: Mapped[str | None] = mapped_column(String(128))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    siret: Mapped[str | None] = mapped_column(String(14))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    packaging_unit: Mapped[str] = mapped_column(String(32), default="unit", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ProductSupplier(Base):
    """Catalogue : prix et référence d'un produit chez un fournisseur."""

    __tablename__ = "product_suppliers"
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    supplier_reference: Mapped[str | None] = mapped_column(String(100))
    packaging_unit: Mapped[str | None] = mapped_column(String(50))
    units_per_package: Mapped[int | None] = mapped_column(Integer)

    product: Mapped[Product] = relationship()
    supplier: Mapped[Supplier] = relationship()

    __table_args__ = (CheckConstraint("unit_price >= 0", name="ck_product_supplier_price_nonneg"),)


# ---------- PURCHASE LISTS ----------
class PurchaseList(Base):
    __tablename__ = "purchase_lists"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id", ondelete="RESTRICT"), nullable=False, index=True)
    status: Mapped[ListStatus] = mapped_column(
        Enum(ListStatus, name="purchase_list_status"),
        default=ListStatus.draft,
        nullable=False,
    )
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    station: Mapped[Station] = relationship()
    items: Mapped[list["PurchaseListItem"]] = relationship(
        back_populates="purchase_list",
        cascade="all, delete-orphan",
        order_by="PurchaseListItem.id",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # une seule liste DRAFT par station
        Index(
            "uq_purchase_list_station_draft",
            "station_id",
            unique=True,
            postgresql_where=text("status = 'draft'"),
            sqlite_where=text("status = 'draft'"),
        ),
    )


class PurchaseListItem(Base):
    __tablename__ = "purchase_list_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_list_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    desired_delivery_date: Mapped[date | None] = mapped_column(Date)

    purchase_list: Mapped[PurchaseList] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()
    supplier: Mapped[Supplier] = relationship()

    __table_args__ = (
        UniqueConstraint("purchase_list_id", "product_id", "supplier_id", name="uq_purchase_list_item"),
        CheckConstraint("quantity > 0", name="ck_purchase_list_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_purchase_list_item_price_nonneg"),
    )


# ---------- PURCHASE ORDERS ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id", ondelete="RESTRICT"), nullable=False, index=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False, index=True)
    purchase_list_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchase_lists.id", ondelete="SET NULL"),
        index=True,
    )
    status: Mapped[OrderStatus] = mapped_column(
        ORDER_STATUS_TYPE,
        default=OrderStatus.registered,
        nullable=False,
    )
    # dérivé des lignes, jamais saisi
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    # expédition
    carrier: Mapped[str | None] = mapped_column(String(128))
    tracking_number: Mapped[str | None] = mapped_column(String(128))
    shipping_document_ref: Mapped[str | None] = mapped_column(String(255))
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # réception
    signed_delivery_document_ref: Mapped[str | None] = mapped_column(String(255))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reception_notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    station: Mapped[Station] = relationship()
    supplier: Mapped[Supplier] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.product_id",
    )
    history: Mapped[list["OrderStatusHistory"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    order_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True)
    qty_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    supplier_reference: Mapped[str | None] = mapped_column(String(100))
    desired_delivery_date: Mapped[date | None] = mapped_column(Date)
    confirmed_delivery_date: Mapped[date | None] = mapped_column(Date)
    # réception supérieure à la commande, acceptée mais signalée
    over_delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    order: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("qty_ordered > 0", name="ck_order_line_qty_pos"),
        CheckConstraint("qty_received >= 0", name="ck_order_line_qty_received_nonneg"),
        CheckConstraint("unit_price >= 0", name="ck_order_line_unit_price_nonneg"),
    )


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[OrderStatus] = mapped_column(ORDER_STATUS_TYPE, nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64))

    order: Mapped[PurchaseOrder] = relationship(back_populates="history")


# ---------- TRANSFER REQUESTS ----------
class TransferRequest(Base):
    __tablename__ = "transfer_requests"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    requesting_station_id: Mapped[int] = mapped_column(
        ForeignKey("stations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    source_station_id: Mapped[int] = mapped_column(
        ForeignKey("stations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[TransferStatus] = mapped_column(
        TRANSFER_STATUS_TYPE,
        default=TransferStatus.registered,
        nullable=False,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    shipping_document_ref: Mapped[str | None] = mapped_column(String(255))
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    signed_delivery_document_ref: Mapped[str | None] = mapped_column(String(255))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    requesting_station: Mapped[Station] = relationship(foreign_keys=[requesting_station_id])
    source_station: Mapped[Station] = relationship(foreign_keys=[source_station_id])
    lines: Mapped[list["TransferRequestLine"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferRequestLine.product_id",
    )
    history: Mapped[list["TransferStatusHistory"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferStatusHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("requesting_station_id <> source_station_id", name="ck_transfer_distinct_stations"),
        CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_transfer_rejection_reason",
        ),
    )


class TransferRequestLine(Base):
    __tablename__ = "transfer_request_lines"
    transfer_id: Mapped[int] = mapped_column(ForeignKey("transfer_requests.id", ondelete="CASCADE"), primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True)
    qty_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    # None = pas encore statué ; 0 = refusé pour ce produit
    qty_granted: Mapped[int | None] = mapped_column(Integer)
    qty_received: Mapped[int | None] = mapped_column(Integer)

    transfer: Mapped[TransferRequest] = relationship(back_populates="lines")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("qty_requested > 0", name="ck_transfer_line_qty_pos"),
        CheckConstraint("qty_granted IS NULL OR qty_granted >= 0", name="ck_transfer_line_granted_nonneg"),
        CheckConstraint("qty_received IS NULL OR qty_received >= 0", name="ck_transfer_line_received_nonneg"),
    )


class TransferStatusHistory(Base):
    __tablename__ = "transfer_status_history"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_id: Mapped[int] = mapped_column(
        ForeignKey("transfer_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[TransferStatus] = mapped_column(TRANSFER_STATUS_TYPE, nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64))

    transfer: Mapped[TransferRequest] = relationship(back_populates="history")


# ---------- NUMBERING ----------
class NumberSequence(Base):
    __tablename__ = "number_sequences"
    kind: Mapped[SequenceKind] = mapped_column(Enum(SequenceKind, name="sequence_kind"), primary_key=True)
    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (CheckConstraint("last_value >= 0", name="ck_number_sequence_nonneg"),)
