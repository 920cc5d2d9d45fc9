"""Relational store for the code pool and the purchase ledger.

SQLAlchemy Core tables `recharge_codes` and `purchases`. Every state change
is a compare-and-set `UPDATE ... WHERE status = ...` whose rowcount decides
the winner, executed inside one transaction per operation.
"""

import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    false,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from recharge_engine.logging_config import get_logger
from recharge_engine.models.purchase import (
    CustomerData,
    ExpiryReminders,
    PaymentMethod,
    Purchase,
    PurchaseStatus,
    ReminderMilestone,
    ReminderRecord,
)
from recharge_engine.models.recharge_code import CodeStatus, RechargeCode
from recharge_engine.repositories.errors import (
    CodeNotAvailableError,
    CodeNotFoundError,
    DuplicateRecordError,
    PurchaseNotFoundError,
    PurchaseNotPendingError,
)
from recharge_engine.state_logger import (
    log_code_status_change,
    log_purchase_recorded,
    log_purchase_status_change,
    log_reminder_marked_sent,
)
from recharge_engine.utils.calendar import ensure_utc

logger = get_logger(__name__)

CENTS = Decimal("0.01")


def _in_clause(values) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


metadata = MetaData()

recharge_codes = Table(
    "recharge_codes",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("code", String(128), nullable=False, unique=True),
    Column("value", Numeric(12, 2), nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("sold_at", DateTime(timezone=True)),
    Column("plan_id", String(64), nullable=False, index=True),
    Column("app_name", String(128), nullable=False),
    CheckConstraint(f"status IN ({_in_clause(CodeStatus)})", name="ck_recharge_codes_status"),
)


def _reminder_columns() -> List[Column]:
    columns = []
    for milestone in ReminderMilestone:
        columns.extend([
            Column(f"{milestone.value}_sent", Boolean, nullable=False, default=False),
            Column(f"{milestone.value}_sent_at", DateTime(timezone=True)),
            Column(f"{milestone.value}_message_id", String(128)),
        ])
    return columns


purchases = Table(
    "purchases",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("customer_id", String(64), nullable=False, index=True),
    Column("plan_id", String(64), nullable=False, index=True),
    Column("recharge_code", String(128), nullable=False, default=""),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("status", String(32), nullable=False, index=True),
    Column("payment_method", String(32), nullable=False),
    Column("payment_id", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("approved_at", DateTime(timezone=True)),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("reseller_id", String(64), nullable=False),
    # NULL for parked and rejected purchases; a sold code backs one purchase only
    Column("assigned_code_id", String(64), unique=True),
    Column("code_delivery_failure_reason", String(64)),
    Column("customer_data", JSON, nullable=False),
    *_reminder_columns(),
    CheckConstraint(f"status IN ({_in_clause(PurchaseStatus)})", name="ck_purchases_status"),
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written as UTC
    return ensure_utc(value) if value is not None else None


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENTS)


def _code_to_row(code: RechargeCode) -> Dict[str, Any]:
    return {
        "id": code.id,
        "code": code.code,
        "value": code.value,
        "status": code.status.value,
        "created_at": ensure_utc(code.created_at),
        "expires_at": ensure_utc(code.expires_at),
        "sold_at": _as_utc(code.sold_at),
        "plan_id": code.plan_id,
        "app_name": code.app_name,
    }


def _row_to_code(row) -> RechargeCode:
    m = row._mapping
    return RechargeCode(
        id=m["id"],
        code=m["code"],
        value=_money(m["value"]),
        status=CodeStatus(m["status"]),
        created_at=_as_utc(m["created_at"]),
        expires_at=_as_utc(m["expires_at"]),
        sold_at=_as_utc(m["sold_at"]),
        plan_id=m["plan_id"],
        app_name=m["app_name"],
    )


def _reminders_to_row(reminders: ExpiryReminders) -> Dict[str, Any]:
    values = {}
    for milestone in ReminderMilestone:
        record = reminders.get(milestone)
        values[f"{milestone.value}_sent"] = record.sent
        values[f"{milestone.value}_sent_at"] = _as_utc(record.sent_at)
        values[f"{milestone.value}_message_id"] = record.message_id
    return values


def _purchase_to_row(purchase: Purchase) -> Dict[str, Any]:
    return {
        "id": purchase.id,
        "customer_id": purchase.customer_id,
        "plan_id": purchase.plan_id,
        "recharge_code": purchase.recharge_code,
        "amount": purchase.amount,
        "status": purchase.status.value,
        "payment_method": purchase.payment_method.value,
        "payment_id": purchase.payment_id,
        "created_at": ensure_utc(purchase.created_at),
        "approved_at": _as_utc(purchase.approved_at),
        "expires_at": ensure_utc(purchase.expires_at),
        "reseller_id": purchase.reseller_id,
        "assigned_code_id": purchase.assigned_code_id,
        "code_delivery_failure_reason": purchase.code_delivery_failure_reason,
        "customer_data": purchase.customer_data.model_dump(mode="json"),
        **_reminders_to_row(purchase.expiry_reminders),
    }


def _row_to_purchase(row) -> Purchase:
    m = row._mapping
    reminders = ExpiryReminders(**{
        milestone.value: ReminderRecord(
            sent=bool(m[f"{milestone.value}_sent"]),
            sent_at=_as_utc(m[f"{milestone.value}_sent_at"]),
            message_id=m[f"{milestone.value}_message_id"],
        )
        for milestone in ReminderMilestone
    })
    return Purchase(
        id=m["id"],
        customer_id=m["customer_id"],
        plan_id=m["plan_id"],
        recharge_code=m["recharge_code"] or "",
        amount=_money(m["amount"]),
        status=PurchaseStatus(m["status"]),
        payment_method=PaymentMethod(m["payment_method"]),
        payment_id=m["payment_id"],
        created_at=_as_utc(m["created_at"]),
        approved_at=_as_utc(m["approved_at"]),
        expires_at=_as_utc(m["expires_at"]),
        reseller_id=m["reseller_id"],
        assigned_code_id=m["assigned_code_id"],
        code_delivery_failure_reason=m["code_delivery_failure_reason"],
        customer_data=CustomerData(**m["customer_data"]),
        expiry_reminders=reminders,
    )


def create_sql_engine(url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine.

    In-memory SQLite gets a single shared connection so every thread sees
    the same database.
    """
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


class SqlStore:
    """Durable storage for recharge codes and purchases.

    Same operations as InMemoryStore; atomicity comes from the database.
    SQLite allows one writer at a time and in-memory SQLite shares a single
    connection across threads, so SQLite access is serialized by a process
    lock as well.
    """

    def __init__(self, url: str = "sqlite:///:memory:", echo: bool = False, engine: Optional[Engine] = None):
        """Initialize store and create tables if missing.

        Args:
            url: SQLAlchemy database URL
            echo: Echo SQL statements
            engine: Pre-built engine (overrides url and echo)
        """
        self._engine = engine or create_sql_engine(url, echo=echo)
        self._lock = threading.RLock() if self._engine.dialect.name == "sqlite" else None
        metadata.create_all(self._engine)
        logger.info("sql_store_initialized", url=self._engine.url.render_as_string(hide_password=True))

    @property
    def engine(self) -> Engine:
        return self._engine

    def _serialized(self):
        return self._lock if self._lock is not None else nullcontext()

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        with self._serialized(), self._engine.begin() as conn:
            yield conn

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        with self._serialized(), self._engine.connect() as conn:
            yield conn

    # ------------------------------------------------------------------
    # Code pool
    # ------------------------------------------------------------------

    def add_codes(self, codes: List[RechargeCode]) -> List[RechargeCode]:
        """Add codes, skipping tokens already in the pool or repeated in the batch.

        Returns:
            The codes actually inserted
        """
        if not codes:
            return []
        tokens = [c.code for c in codes]
        with self._begin() as conn:
            existing = set(
                conn.execute(
                    select(recharge_codes.c.code).where(recharge_codes.c.code.in_(tokens))
                ).scalars()
            )
            inserted = []
            for code in codes:
                if code.code in existing:
                    continue
                existing.add(code.code)
                inserted.append(code.model_copy(deep=True))
            if inserted:
                conn.execute(insert(recharge_codes), [_code_to_row(c) for c in inserted])
        return inserted

    def find_code(self, code_id: str) -> Optional[RechargeCode]:
        with self._connect() as conn:
            row = conn.execute(select(recharge_codes).where(recharge_codes.c.id == code_id)).first()
        return _row_to_code(row) if row else None

    def code_exists(self, token: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                select(recharge_codes.c.id).where(recharge_codes.c.code == token)
            ).first()
        return row is not None

    def find_available_code(self, plan_id: str, now: datetime) -> Optional[RechargeCode]:
        """Oldest available, unexpired code for a plan, or None."""
        stmt = (
            select(recharge_codes)
            .where(
                recharge_codes.c.plan_id == plan_id,
                recharge_codes.c.status == CodeStatus.AVAILABLE.value,
                recharge_codes.c.expires_at > ensure_utc(now),
            )
            .order_by(recharge_codes.c.created_at, recharge_codes.c.id)
            .limit(1)
        )
        with self._connect() as conn:
            row = conn.execute(stmt).first()
        return _row_to_code(row) if row else None

    def _code_conditions(self, plan_id=None, status=None, search=None) -> list:
        conditions = []
        if plan_id is not None:
            conditions.append(recharge_codes.c.plan_id == plan_id)
        if status is not None:
            conditions.append(recharge_codes.c.status == CodeStatus(status).value)
        if search:
            conditions.append(recharge_codes.c.code.contains(search.upper(), autoescape=True))
        return conditions

    def count_codes(self, plan_id: Optional[str] = None, status: Optional[CodeStatus] = None) -> int:
        stmt = select(func.count()).select_from(recharge_codes).where(
            *self._code_conditions(plan_id, status)
        )
        with self._connect() as conn:
            return conn.execute(stmt).scalar_one()

    def get_codes_by_status(self, status: CodeStatus, plan_id: Optional[str] = None) -> List[RechargeCode]:
        stmt = select(recharge_codes).where(*self._code_conditions(plan_id, status))
        with self._connect() as conn:
            return [_row_to_code(r) for r in conn.execute(stmt)]

    def list_codes(
        self,
        plan_id: Optional[str] = None,
        status: Optional[CodeStatus] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[RechargeCode], int]:
        """Filtered page of codes, newest first, with the total matching count."""
        conditions = self._code_conditions(plan_id, status, search)
        page_stmt = (
            select(recharge_codes)
            .where(*conditions)
            .order_by(recharge_codes.c.created_at.desc(), recharge_codes.c.id)
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(recharge_codes).where(*conditions)
        with self._connect() as conn:
            total = conn.execute(count_stmt).scalar_one()
            rows = conn.execute(page_stmt).all()
        return [_row_to_code(r) for r in rows], total

    def expire_codes(self, now: datetime) -> List[RechargeCode]:
        """Move available codes whose horizon has passed to expired."""
        now = ensure_utc(now)
        expired = []
        with self._begin() as conn:
            candidates = conn.execute(
                select(recharge_codes).where(
                    recharge_codes.c.status == CodeStatus.AVAILABLE.value,
                    recharge_codes.c.expires_at <= now,
                )
            ).all()
            for row in candidates:
                result = conn.execute(
                    update(recharge_codes)
                    .where(
                        recharge_codes.c.id == row.id,
                        recharge_codes.c.status == CodeStatus.AVAILABLE.value,
                    )
                    .values(status=CodeStatus.EXPIRED.value)
                )
                if result.rowcount == 1:
                    code = _row_to_code(row)
                    code.status = CodeStatus.EXPIRED
                    expired.append(code)

        for code in expired:
            log_code_status_change(
                code_id=code.id,
                code=code.code,
                plan_id=code.plan_id,
                old_status=CodeStatus.AVAILABLE.value,
                new_status=CodeStatus.EXPIRED.value,
                reason="horizon_passed",
            )
        return expired

    # ------------------------------------------------------------------
    # Purchase ledger
    # ------------------------------------------------------------------

    def _insert_purchase(self, conn: Connection, purchase: Purchase) -> None:
        exists = conn.execute(select(purchases.c.id).where(purchases.c.id == purchase.id)).first()
        if exists is not None:
            raise DuplicateRecordError(f"Purchase with id '{purchase.id}' already exists")
        conn.execute(insert(purchases).values(**_purchase_to_row(purchase)))

    def add_purchase(self, purchase: Purchase) -> Purchase:
        """Add a purchase to the ledger.

        Raises:
            DuplicateRecordError: If the purchase id already exists
        """
        with self._begin() as conn:
            self._insert_purchase(conn, purchase)
        log_purchase_recorded(
            purchase_id=purchase.id,
            plan_id=purchase.plan_id,
            status=purchase.status.value,
            reason=purchase.code_delivery_failure_reason,
        )
        return purchase.model_copy(deep=True)

    def find_purchase(self, purchase_id: str) -> Optional[Purchase]:
        with self._connect() as conn:
            row = conn.execute(select(purchases).where(purchases.c.id == purchase_id)).first()
        return _row_to_purchase(row) if row else None

    def get_purchases_by_status(self, status: PurchaseStatus) -> List[Purchase]:
        stmt = select(purchases).where(purchases.c.status == PurchaseStatus(status).value)
        with self._connect() as conn:
            return [_row_to_purchase(r) for r in conn.execute(stmt)]

    def count_purchases(self, status: Optional[PurchaseStatus] = None) -> int:
        stmt = select(func.count()).select_from(purchases)
        if status is not None:
            stmt = stmt.where(purchases.c.status == PurchaseStatus(status).value)
        with self._connect() as conn:
            return conn.execute(stmt).scalar_one()

    def list_purchases(
        self,
        status: Optional[PurchaseStatus] = None,
        customer_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        reseller_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Purchase], int]:
        """Filtered page of purchases, newest first, with the total matching count."""
        conditions = []
        if status is not None:
            conditions.append(purchases.c.status == PurchaseStatus(status).value)
        if customer_id is not None:
            conditions.append(purchases.c.customer_id == customer_id)
        if plan_id is not None:
            conditions.append(purchases.c.plan_id == plan_id)
        if reseller_id is not None:
            conditions.append(purchases.c.reseller_id == reseller_id)

        page_stmt = (
            select(purchases)
            .where(*conditions)
            .order_by(purchases.c.created_at.desc(), purchases.c.id)
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(purchases).where(*conditions)
        with self._connect() as conn:
            total = conn.execute(count_stmt).scalar_one()
            rows = conn.execute(page_stmt).all()
        return [_row_to_purchase(r) for r in rows], total

    # ------------------------------------------------------------------
    # Atomic composite operations
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for_unclaimable_code(conn: Connection, code_id: str) -> None:
        row = conn.execute(
            select(recharge_codes.c.status).where(recharge_codes.c.id == code_id)
        ).first()
        if row is None:
            raise CodeNotFoundError(f"Code not found: {code_id}")
        if row.status == CodeStatus.AVAILABLE.value:
            raise CodeNotAvailableError(f"Code {code_id} is past its expiry date")
        raise CodeNotAvailableError(f"Code {code_id} is {row.status}")

    @staticmethod
    def _sell_code(conn: Connection, code_id: str, sold_at: datetime) -> bool:
        result = conn.execute(
            update(recharge_codes)
            .where(
                recharge_codes.c.id == code_id,
                recharge_codes.c.status == CodeStatus.AVAILABLE.value,
                recharge_codes.c.expires_at > ensure_utc(sold_at),
            )
            .values(status=CodeStatus.SOLD.value, sold_at=ensure_utc(sold_at))
        )
        return result.rowcount == 1

    def claim_code_for_new_purchase(
        self, code_id: str, sold_at: datetime, purchase: Purchase
    ) -> Tuple[RechargeCode, Purchase]:
        """Mark a code sold and record its purchase in one transaction.

        Raises:
            CodeNotFoundError: If the code id is unknown
            CodeNotAvailableError: If the code is no longer available or past its expiry date
            DuplicateRecordError: If the purchase id already exists
        """
        with self._begin() as conn:
            if not self._sell_code(conn, code_id, sold_at):
                self._raise_for_unclaimable_code(conn, code_id)
            self._insert_purchase(conn, purchase)
            code_row = conn.execute(select(recharge_codes).where(recharge_codes.c.id == code_id)).one()

        code = _row_to_code(code_row)
        log_code_status_change(
            code_id=code.id,
            code=code.code,
            plan_id=code.plan_id,
            old_status=CodeStatus.AVAILABLE.value,
            new_status=CodeStatus.SOLD.value,
            reason="allocated",
        )
        log_purchase_recorded(
            purchase_id=purchase.id,
            plan_id=purchase.plan_id,
            status=purchase.status.value,
            code_id=code_id,
        )
        return code, purchase.model_copy(deep=True)

    def claim_code_for_pending(
        self, code_id: str, purchase_id: str, sold_at: datetime
    ) -> Tuple[RechargeCode, Purchase]:
        """Mark a code sold and approve a parked purchase with it in one transaction.

        Raises:
            PurchaseNotFoundError: If the purchase id is unknown
            PurchaseNotPendingError: If the purchase is not waiting for a code
            CodeNotFoundError: If the code id is unknown
            CodeNotAvailableError: If the code is not available or past its expiry date
        """
        with self._begin() as conn:
            purchase_row = conn.execute(select(purchases).where(purchases.c.id == purchase_id)).first()
            if purchase_row is None:
                raise PurchaseNotFoundError(f"Purchase not found: {purchase_id}")
            if purchase_row.status != PurchaseStatus.PENDING_CODE_DELIVERY.value:
                raise PurchaseNotPendingError(f"Purchase {purchase_id} is {purchase_row.status}")

            if not self._sell_code(conn, code_id, sold_at):
                self._raise_for_unclaimable_code(conn, code_id)
            code_row = conn.execute(select(recharge_codes).where(recharge_codes.c.id == code_id)).one()

            result = conn.execute(
                update(purchases)
                .where(
                    purchases.c.id == purchase_id,
                    purchases.c.status == PurchaseStatus.PENDING_CODE_DELIVERY.value,
                )
                .values(
                    status=PurchaseStatus.APPROVED.value,
                    recharge_code=code_row.code,
                    assigned_code_id=code_id,
                    approved_at=ensure_utc(sold_at),
                    **_reminders_to_row(ExpiryReminders()),
                )
            )
            if result.rowcount != 1:
                # Raising here rolls back the code sale above
                raise PurchaseNotPendingError(f"Purchase {purchase_id} was assigned concurrently")
            purchase_row = conn.execute(select(purchases).where(purchases.c.id == purchase_id)).one()

        code = _row_to_code(code_row)
        purchase = _row_to_purchase(purchase_row)
        log_code_status_change(
            code_id=code.id,
            code=code.code,
            plan_id=code.plan_id,
            old_status=CodeStatus.AVAILABLE.value,
            new_status=CodeStatus.SOLD.value,
            reason="allocated",
        )
        log_purchase_status_change(
            purchase_id=purchase.id,
            plan_id=purchase.plan_id,
            old_status=PurchaseStatus.PENDING_CODE_DELIVERY.value,
            new_status=PurchaseStatus.APPROVED.value,
            reason="manual_assignment",
            customer_id=purchase.customer_id,
        )
        return code, purchase

    def mark_reminder_sent(
        self,
        purchase_id: str,
        milestone: ReminderMilestone,
        sent_at: datetime,
        message_id: Optional[str] = None,
    ) -> bool:
        """Latch a reminder milestone if it is still unsent.

        Returns:
            True if this call set the latch, False if it was already set
            or the purchase is not approved

        Raises:
            PurchaseNotFoundError: If the purchase id is unknown
        """
        sent_column = purchases.c[f"{milestone.value}_sent"]
        with self._begin() as conn:
            result = conn.execute(
                update(purchases)
                .where(
                    purchases.c.id == purchase_id,
                    purchases.c.status == PurchaseStatus.APPROVED.value,
                    sent_column == false(),
                )
                .values({
                    f"{milestone.value}_sent": True,
                    f"{milestone.value}_sent_at": ensure_utc(sent_at),
                    f"{milestone.value}_message_id": message_id,
                })
            )
            if result.rowcount == 0:
                exists = conn.execute(
                    select(purchases.c.id).where(purchases.c.id == purchase_id)
                ).first()
                if exists is None:
                    raise PurchaseNotFoundError(f"Purchase not found: {purchase_id}")
                return False

        log_reminder_marked_sent(
            purchase_id=purchase_id,
            milestone=milestone.value,
            sent_at=sent_at,
            message_id=message_id,
        )
        return True

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Delete all codes and purchases.

        Warning: This removes all data. Use with caution.
        """
        with self._begin() as conn:
            conn.execute(purchases.delete())
            conn.execute(recharge_codes.delete())

    def get_statistics(self) -> Dict[str, int]:
        with self._connect() as conn:
            return {
                "total_codes": conn.execute(select(func.count()).select_from(recharge_codes)).scalar_one(),
                "total_purchases": conn.execute(select(func.count()).select_from(purchases)).scalar_one(),
                "unique_plans": conn.execute(
                    select(func.count(func.distinct(recharge_codes.c.plan_id)))
                ).scalar_one(),
            }

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"SqlStore(url={self._engine.url.render_as_string(hide_password=True)!r})"
