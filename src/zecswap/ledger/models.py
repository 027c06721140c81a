"""SQLAlchemy models for quotes, swap orders and the deposit address pool."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DecimalString(TypeDecorator):
    """Stores Decimal values as canonical strings.

    SQLite has no exact numeric type, and deposit sums must compare
    exactly against the expected input amount.
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def _enum_column(enum_cls) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class QuoteMode(str, Enum):
    """Which side of the swap the requested amount describes."""

    PAY = "pay"          # amount is what the user sends
    RECEIVE = "receive"  # amount is the ZEC the user wants


class QuoteState(str, Enum):
    """Usage state of a quote."""

    UNUSED = "unused"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    ALLOCATION_FAILED = "allocation_failed"


class OrderStatus(str, Enum):
    """Lifecycle status of a swap order."""

    PENDING = "pending"          # Awaiting deposit
    DEPOSITED = "deposited"      # Sufficient inbound funds observed
    PROCESSING = "processing"    # Conversion to ZEC underway
    COMPLETE = "complete"        # ZEC delivered
    FAILED = "failed"            # Conversion could not complete
    EXPIRED = "expired"          # Deadline passed without sufficient deposit

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETE, OrderStatus.FAILED, OrderStatus.EXPIRED})

# The only legal edges of the order lifecycle
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.DEPOSITED, OrderStatus.EXPIRED}),
    OrderStatus.DEPOSITED: frozenset({OrderStatus.PROCESSING}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETE, OrderStatus.FAILED}),
    OrderStatus.COMPLETE: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}


class Quote(Base):
    """A time-bounded exchange offer."""

    __tablename__ = "quotes"
    __table_args__ = (Index("ix_quotes_state_expires", "state", "expires_at"),)

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    source_asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    request_mode: Mapped[QuoteMode] = mapped_column(_enum_column(QuoteMode), nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    input_amount: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)  # source units
    fee_amount: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)  # source units
    expected_output: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)  # ZEC
    rate: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)  # rate source value
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    state: Mapped[QuoteState] = mapped_column(
        _enum_column(QuoteState), default=QuoteState.UNUSED, nullable=False
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def exchange_rate(self) -> Decimal:
        """ZEC received per unit of source asset actually converted (after fee)."""
        effective_input = self.input_amount - self.fee_amount
        if effective_input <= 0:
            return Decimal("0")
        return self.expected_output / effective_input

    def is_usable(self, now: datetime) -> bool:
        return self.state == QuoteState.UNUSED and now < self.expires_at


class SwapOrder(Base):
    """The binding, stateful record created when a quote is accepted."""

    __tablename__ = "swap_orders"
    __table_args__ = (Index("ix_swap_orders_status_deadline", "status", "deposit_deadline"),)

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    quote_id: Mapped[str] = mapped_column(ForeignKey("quotes.id"), unique=True, nullable=False)
    source_asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    expected_input_amount: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    expected_output: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    deposit_address: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    deposit_memo: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    destination_address: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus), default=OrderStatus.PENDING, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    deposit_deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    deposit_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    settlement_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Bumped on every UPDATE; a flush against a stale row raises StaleDataError
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    quote: Mapped["Quote"] = relationship(lazy="selectin")
    deposits: Mapped[list["ObservedDeposit"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="ObservedDeposit.id",
    )
    transitions: Mapped[list["OrderTransition"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="OrderTransition.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def received_amount(self) -> Decimal:
        """Sum of matching deposits that arrived while the order could still take them."""
        return sum((d.amount for d in self.deposits if d.counted and not d.late), Decimal("0"))


class ObservedDeposit(Base):
    """An inbound transaction reported by the deposit watcher (append-only)."""

    __tablename__ = "observed_deposits"
    __table_args__ = (
        Index("ix_observed_deposits_order_tx", "order_id", "tx_reference", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("swap_orders.id"), nullable=False)
    tx_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    memo: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    counted: Mapped[bool] = mapped_column(default=True)  # asset (and memo) match the order
    late: Mapped[bool] = mapped_column(default=False)  # arrived after expiry
    observed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    order: Mapped["SwapOrder"] = relationship(back_populates="deposits")


class OrderTransition(Base):
    """Audit trail of status changes (append-only)."""

    __tablename__ = "order_transitions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("swap_orders.id"), nullable=False, index=True)
    from_status: Mapped[Optional[OrderStatus]] = mapped_column(_enum_column(OrderStatus), nullable=True)
    to_status: Mapped[OrderStatus] = mapped_column(_enum_column(OrderStatus), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    order: Mapped["SwapOrder"] = relationship(back_populates="transitions")


class DepositAddress(Base):
    """A deposit address in an asset's pool.

    Addresses are derived in index order and never deleted; whether one is
    free is decided by its bindings.
    """

    __tablename__ = "deposit_addresses"
    __table_args__ = (
        Index("ix_deposit_addresses_asset_index", "asset_id", "derivation_index", unique=True),
        Index("ix_deposit_addresses_asset_address", "asset_id", "address", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    derivation_index: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class DepositBinding(Base):
    """Binds a deposit target (address, memo) to one order.

    A binding is active until ``released_at`` is set, which happens when the
    order reaches a terminal status. The partial unique index makes two
    active bindings for the same target impossible at the storage level.
    Memo-less targets store an empty memo so the index applies to them too.
    """

    __tablename__ = "deposit_bindings"
    __table_args__ = (
        Index(
            "uq_deposit_bindings_active_target",
            "asset_id",
            "address",
            "memo",
            unique=True,
            sqlite_where=text("released_at IS NULL"),
            postgresql_where=text("released_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    memo: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    order_id: Mapped[str] = mapped_column(ForeignKey("swap_orders.id"), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
