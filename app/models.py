from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

ID_TYPE = BigInteger().with_variant(Integer, 'sqlite')
QTY_TYPE = Numeric(14, 4)


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    ADMIN = 'admin'
    WAREHOUSE = 'warehouse'
    FIELD = 'field'


class SpotType(str, Enum):
    WILL_CALL_CONSTRUCTION = 'will_call_construction'
    WILL_CALL_SERVICE = 'will_call_service'
    STAGING = 'staging'
    DELIVERY = 'delivery'
    LONG_TERM = 'long_term'
    PENDING_RETURNS = 'pending_returns'


class PurchaseOrderStatus(str, Enum):
    OPEN = 'open'
    PARTIAL = 'partial'
    RECEIVED = 'received'
    CLOSED = 'closed'


class StagingStatus(str, Enum):
    STAGED = 'staged'
    READY = 'ready'
    PICKED_UP = 'picked_up'
    DELIVERED = 'delivered'
    RETURNED = 'returned'


ACTIVE_STAGING_STATUSES = (StagingStatus.STAGED, StagingStatus.READY)


class SyncKind(str, Enum):
    PURCHASE_ORDERS = 'purchase_orders'
    RECEIVED_ITEMS = 'received_items'
    LOCATIONS = 'locations'
    JOBS = 'jobs'


class SyncOutcome(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    # Persist the lowercase values; the partial index below filters on them.
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


STAGING_STATUS_TYPE = _enum(StagingStatus, 'staging_status')


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, 'user_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class WebSession(Base):
    __tablename__ = 'web_sessions'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    session_token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Location(Base):
    __tablename__ = 'locations'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    ce_locationnum: Mapped[int | None] = mapped_column(BigInteger, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    location_type: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


class StagingSpot(Base):
    __tablename__ = 'staging_spots'
    __table_args__ = (UniqueConstraint('location_id', 'code', name='uq_staging_spots_location_code'),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    spot_type: Mapped[SpotType] = mapped_column(_enum(SpotType, 'spot_type'), nullable=False)
    grid_row: Mapped[int | None] = mapped_column(Integer)
    grid_col: Mapped[int | None] = mapped_column(Integer)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class Job(Base):
    __tablename__ = 'jobs'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    job_num: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(Text)
    state: Mapped[str | None] = mapped_column(Text)
    zip: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str | None] = mapped_column(Text)
    ce_attachid: Mapped[int | None] = mapped_column(BigInteger)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    ce_ponum: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    vendor_num: Mapped[str | None] = mapped_column(Text)
    vendor_name: Mapped[str | None] = mapped_column(Text)
    po_date: Mapped[date | None] = mapped_column(Date)
    blurb: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(Text)
    ce_attachid: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        _enum(PurchaseOrderStatus, 'purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.OPEN,
        server_default=PurchaseOrderStatus.OPEN.value,
    )
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    items: Mapped[list[POItem]] = relationship(back_populates='purchase_order', order_by='POItem.item_order')


class POItem(Base):
    __tablename__ = 'po_items'
    __table_args__ = (UniqueConstraint('po_id', 'ce_itemid', name='uq_po_items_po_ce_itemid'),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    po_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'), nullable=False)
    ce_itemid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    item_order: Mapped[int | None] = mapped_column(Integer)
    item_num: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    vendor_item_num: Mapped[str | None] = mapped_column(Text)
    outstanding: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')
    received: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')
    unposted: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates='items')
    distributions: Mapped[list[PODistribution]] = relationship(order_by='PODistribution.id')


class PODistribution(Base):
    __tablename__ = 'po_distributions'
    __table_args__ = (Index('ix_po_distributions_item_ce_itemid', 'po_item_id', 'ce_itemid'),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    po_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('po_items.id'), nullable=False)
    ce_itemid: Mapped[int | None] = mapped_column(BigInteger)
    job_num: Mapped[str | None] = mapped_column(Text)
    job_name: Mapped[str | None] = mapped_column(Text)
    phase_num: Mapped[str | None] = mapped_column(Text)
    phase_name: Mapped[str | None] = mapped_column(Text)
    cat_num: Mapped[str | None] = mapped_column(Text)
    cat_name: Mapped[str | None] = mapped_column(Text)
    outstanding: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')
    received: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')
    unposted: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')


class ReceivedItem(Base):
    __tablename__ = 'received_items'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    ce_serialnum: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    po_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'))
    ce_ponum: Mapped[int | None] = mapped_column(BigInteger, index=True)
    ce_itemnum: Mapped[str | None] = mapped_column(Text)
    job_num: Mapped[str | None] = mapped_column(Text)
    received_date: Mapped[date | None] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False, default=Decimal('0'), server_default='0')
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())


class StagingRecord(Base):
    __tablename__ = 'staging_records'
    __table_args__ = (
        # At most one active occupant per spot.
        Index(
            'uq_staging_records_active_spot',
            'spot_id',
            unique=True,
            postgresql_where=text("status IN ('staged', 'ready')"),
            sqlite_where=text("status IN ('staged', 'ready')"),
        ),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    po_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'))
    request_id: Mapped[str | None] = mapped_column(Text)
    job_num: Mapped[str | None] = mapped_column(Text)
    job_name: Mapped[str | None] = mapped_column(Text)
    job_address: Mapped[str | None] = mapped_column(Text)
    spot_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('staging_spots.id'))
    custom_location: Mapped[str | None] = mapped_column(Text)
    pack_number: Mapped[str | None] = mapped_column(Text)
    item_descriptions: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[StagingStatus] = mapped_column(
        STAGING_STATUS_TYPE,
        nullable=False,
        default=StagingStatus.STAGED,
        server_default=StagingStatus.STAGED.value,
    )
    staged_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    staged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    lines: Mapped[list[StagingRecordLine]] = relationship(order_by='StagingRecordLine.id')


class StagingRecordLine(Base):
    __tablename__ = 'staging_record_lines'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    staging_record_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('staging_records.id', ondelete='CASCADE'), nullable=False, index=True
    )
    po_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('po_items.id'), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(QTY_TYPE, nullable=False)
    job_num: Mapped[str | None] = mapped_column(Text)
    job_name: Mapped[str | None] = mapped_column(Text)


class StagingStatusEvent(Base):
    __tablename__ = 'staging_status_events'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    staging_record_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('staging_records.id'), nullable=False, index=True
    )
    from_status: Mapped[StagingStatus | None] = mapped_column(STAGING_STATUS_TYPE)
    to_status: Mapped[StagingStatus] = mapped_column(STAGING_STATUS_TYPE, nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Delivery(Base):
    __tablename__ = 'deliveries'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    staging_record_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('staging_records.id'), nullable=False, unique=True
    )
    delivery_date: Mapped[date | None] = mapped_column(Date)
    scheduled_date: Mapped[date | None] = mapped_column(Date)
    signer_name: Mapped[str] = mapped_column(Text, nullable=False)
    signer_first_initial: Mapped[str] = mapped_column(Text, nullable=False)
    signer_last_name: Mapped[str] = mapped_column(Text, nullable=False)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    notes: Mapped[str | None] = mapped_column(Text)


class SyncLog(Base):
    __tablename__ = 'sync_log'

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    sync_type: Mapped[SyncKind] = mapped_column(_enum(SyncKind, 'sync_kind'), nullable=False, index=True)
    status: Mapped[SyncOutcome] = mapped_column(_enum(SyncOutcome, 'sync_outcome'), nullable=False)
    records_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    error_message: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
