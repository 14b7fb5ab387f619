"""initial procurement schema (master data, lists, orders, transfers)

Revision ID: 5b1f0c9e2a41
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b1f0c9e2a41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Les Enum SQLAlchemy stockent le NOM du membre (draft, registered, ...)
LIST_STATUS = sa.Enum("draft", "archived", name="purchase_list_status")
ORDER_STATUS = sa.Enum(
    "registered", "confirmed", "shipped", "received", "closed", "invoiced", "archived",
    name="order_status",
)
TRANSFER_STATUS = sa.Enum(
    "registered", "confirmed", "logistics_processed", "shipped", "received", "closed",
    "accounting_processed", "archived", "rejected",
    name="transfer_status",
)
SEQUENCE_KIND = sa.Enum("order", "transfer", name="sequence_kind")


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True)


def upgrade() -> None:
    # ---------- master data ----------
    op.create_table(
        "stations",
        _pk(),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("city", sa.String(128)),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "suppliers",
        _pk(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("siret", sa.String(14)),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "products",
        _pk(),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("packaging_unit", sa.String(32), nullable=False, server_default="unit"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "product_suppliers",
        sa.Column("product_id", sa.BigInteger, sa.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("supplier_id", sa.BigInteger, sa.ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("supplier_reference", sa.String(100)),
        sa.Column("packaging_unit", sa.String(50)),
        sa.Column("units_per_package", sa.Integer),
        sa.CheckConstraint("unit_price >= 0", name="ck_product_supplier_price_nonneg"),
    )

    # ---------- purchase lists ----------
    op.create_table(
        "purchase_lists",
        _pk(),
        sa.Column("station_id", sa.BigInteger, sa.ForeignKey("stations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", LIST_STATUS, nullable=False),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_purchase_lists_station_id", "purchase_lists", ["station_id"])
    op.create_index(
        "uq_purchase_list_station_draft",
        "purchase_lists",
        ["station_id"],
        unique=True,
        postgresql_where=sa.text("status = 'draft'"),
        sqlite_where=sa.text("status = 'draft'"),
    )
    op.create_table(
        "purchase_list_items",
        _pk(),
        sa.Column(
            "purchase_list_id",
            sa.BigInteger,
            sa.ForeignKey("purchase_lists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.BigInteger, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("supplier_id", sa.BigInteger, sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("desired_delivery_date", sa.Date),
        sa.UniqueConstraint("purchase_list_id", "product_id", "supplier_id", name="uq_purchase_list_item"),
        sa.CheckConstraint("quantity > 0", name="ck_purchase_list_item_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_purchase_list_item_price_nonneg"),
    )
    op.create_index("ix_purchase_list_items_purchase_list_id", "purchase_list_items", ["purchase_list_id"])

    # ---------- purchase orders ----------
    op.create_table(
        "purchase_orders",
        _pk(),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("station_id", sa.BigInteger, sa.ForeignKey("stations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("supplier_id", sa.BigInteger, sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("purchase_list_id", sa.BigInteger, sa.ForeignKey("purchase_lists.id", ondelete="SET NULL")),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("carrier", sa.String(128)),
        sa.Column("tracking_number", sa.String(128)),
        sa.Column("shipping_document_ref", sa.String(255)),
        sa.Column("shipped_at", sa.DateTime(timezone=True)),
        sa.Column("signed_delivery_document_ref", sa.String(255)),
        sa.Column("received_at", sa.DateTime(timezone=True)),
        sa.Column("reception_notes", sa.Text),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_purchase_orders_station_id", "purchase_orders", ["station_id"])
    op.create_index("ix_purchase_orders_supplier_id", "purchase_orders", ["supplier_id"])
    op.create_index("ix_purchase_orders_purchase_list_id", "purchase_orders", ["purchase_list_id"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("order_id", sa.BigInteger, sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("product_id", sa.BigInteger, sa.ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("qty_ordered", sa.Integer, nullable=False),
        sa.Column("qty_received", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("supplier_reference", sa.String(100)),
        sa.Column("desired_delivery_date", sa.Date),
        sa.Column("confirmed_delivery_date", sa.Date),
        sa.Column("over_delivered", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.CheckConstraint("qty_ordered > 0", name="ck_order_line_qty_pos"),
        sa.CheckConstraint("qty_received >= 0", name="ck_order_line_qty_received_nonneg"),
        sa.CheckConstraint("unit_price >= 0", name="ck_order_line_unit_price_nonneg"),
    )
    op.create_table(
        "order_status_history",
        _pk(),
        sa.Column("order_id", sa.BigInteger, sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(64)),
    )
    op.create_index("ix_order_status_history_order_id", "order_status_history", ["order_id"])

    # ---------- transfer requests ----------
    op.create_table(
        "transfer_requests",
        _pk(),
        sa.Column("transfer_number", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "requesting_station_id",
            sa.BigInteger,
            sa.ForeignKey("stations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "source_station_id",
            sa.BigInteger,
            sa.ForeignKey("stations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", TRANSFER_STATUS, nullable=False),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("shipping_document_ref", sa.String(255)),
        sa.Column("shipped_at", sa.DateTime(timezone=True)),
        sa.Column("signed_delivery_document_ref", sa.String(255)),
        sa.Column("received_at", sa.DateTime(timezone=True)),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.CheckConstraint("requesting_station_id <> source_station_id", name="ck_transfer_distinct_stations"),
        sa.CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_transfer_rejection_reason",
        ),
    )
    op.create_index("ix_transfer_requests_requesting_station_id", "transfer_requests", ["requesting_station_id"])
    op.create_index("ix_transfer_requests_source_station_id", "transfer_requests", ["source_station_id"])

    op.create_table(
        "transfer_request_lines",
        sa.Column(
            "transfer_id",
            sa.BigInteger,
            sa.ForeignKey("transfer_requests.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("product_id", sa.BigInteger, sa.ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("qty_requested", sa.Integer, nullable=False),
        sa.Column("qty_granted", sa.Integer),
        sa.Column("qty_received", sa.Integer),
        sa.CheckConstraint("qty_requested > 0", name="ck_transfer_line_qty_pos"),
        sa.CheckConstraint("qty_granted IS NULL OR qty_granted >= 0", name="ck_transfer_line_granted_nonneg"),
        sa.CheckConstraint("qty_received IS NULL OR qty_received >= 0", name="ck_transfer_line_received_nonneg"),
    )
    op.create_table(
        "transfer_status_history",
        _pk(),
        sa.Column(
            "transfer_id",
            sa.BigInteger,
            sa.ForeignKey("transfer_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", TRANSFER_STATUS, nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(64)),
    )
    op.create_index("ix_transfer_status_history_transfer_id", "transfer_status_history", ["transfer_id"])

    # ---------- numbering ----------
    op.create_table(
        "number_sequences",
        sa.Column("kind", SEQUENCE_KIND, primary_key=True),
        sa.Column("year", sa.Integer, primary_key=True),
        sa.Column("last_value", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("last_value >= 0", name="ck_number_sequence_nonneg"),
    )


def downgrade() -> None:
    for table in (
        "number_sequences",
        "transfer_status_history",
        "transfer_request_lines",
        "transfer_requests",
        "order_status_history",
        "purchase_order_lines",
        "purchase_orders",
        "purchase_list_items",
        "purchase_lists",
        "product_suppliers",
        "products",
        "suppliers",
        "stations",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (SEQUENCE_KIND, TRANSFER_STATUS, ORDER_STATUS, LIST_STATUS):
        enum_type.drop(bind, checkfirst=True)
