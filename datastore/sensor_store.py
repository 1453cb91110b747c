"""Relational storage for sensor definitions."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Uuid,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from app.schemas import SensorDefinitionOut
from models.records import KeyKind, PageRequest, SensorFilter, SensorKey
from services.errors import ConflictError, OperationCancelledError
from settings import get_settings

logger = logging.getLogger(__name__)

SnapshotChange = Callable[[SensorDefinitionOut], SensorDefinitionOut]


class Base(DeclarativeBase):
    pass


class SensorDefinitionRow(Base):
    __tablename__ = "sensors"
    __table_args__ = (Index("ix_sensors_sensor_id", "sensor_id", unique=True),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sensor_id: Mapped[str] = mapped_column(String, nullable=False)
    sensor_type: Mapped[str] = mapped_column(String, nullable=False)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    operating_min: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    operating_max: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    warning_min: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    warning_max: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    interval_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=2000)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    simulate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<SensorDefinitionRow {self.sensor_id} id={self.id}>"


_SEEDS = (
    SensorDefinitionOut(
        id=uuid.UUID("11111111-1111-1111-1111-111111111111"),
        sensor_id="temp-1",
        sensor_type="temperature",
        unit="°C",
        operating_min=50,
        operating_max=150,
        warning_min=70,
        warning_max=130,
        interval_ms=2000,
        enabled=True,
        simulate=True,
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ),
    SensorDefinitionOut(
        id=uuid.UUID("22222222-2222-2222-2222-222222222222"),
        sensor_id="pressure-1",
        sensor_type="pressure",
        unit="bar",
        operating_min=1,
        operating_max=5,
        warning_min=1.5,
        warning_max=4.5,
        interval_ms=3000,
        enabled=True,
        simulate=True,
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ),
)

# Columns a mutation may rewrite; id and sensor_id are fixed at creation.
_MUTABLE_FIELDS = (
    "sensor_type",
    "unit",
    "operating_min",
    "operating_max",
    "warning_min",
    "warning_max",
    "interval_ms",
    "enabled",
    "simulate",
    "updated_at",
)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_snapshot(row: SensorDefinitionRow) -> SensorDefinitionOut:
    return SensorDefinitionOut(
        id=row.id,
        sensor_id=row.sensor_id,
        sensor_type=row.sensor_type,
        unit=row.unit,
        operating_min=row.operating_min,
        operating_max=row.operating_max,
        warning_min=row.warning_min,
        warning_max=row.warning_max,
        interval_ms=row.interval_ms,
        enabled=row.enabled,
        simulate=row.simulate,
        updated_at=_as_utc(row.updated_at),
    )


def _raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled before commit.")


class SensorStore:
    """Transactional access to the ``sensors`` table.

    Every mutating call runs in its own transaction, so a write either
    applies completely or not at all. A cancellation signal that is set
    before the commit rolls the transaction back.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    def ensure_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()

    def find(self, key: SensorKey) -> Optional[SensorDefinitionOut]:
        with self._sessions() as session:
            row = self._lookup(session, key)
            return _to_snapshot(row) if row is not None else None

    def exists(self, sensor_id: str) -> bool:
        with self._sessions() as session:
            stmt = select(SensorDefinitionRow.id).where(SensorDefinitionRow.sensor_id == sensor_id)
            return session.scalar(stmt.limit(1)) is not None

    def list(
        self, filters: SensorFilter, page: PageRequest
    ) -> tuple[int, list[SensorDefinitionOut]]:
        stmt = select(SensorDefinitionRow)
        if filters.sensor_type is not None and filters.sensor_type.strip():
            stmt = stmt.where(SensorDefinitionRow.sensor_type == filters.sensor_type)
        if filters.enabled is not None:
            stmt = stmt.where(SensorDefinitionRow.enabled == filters.enabled)
        if filters.simulate is not None:
            stmt = stmt.where(SensorDefinitionRow.simulate == filters.simulate)

        with self._sessions() as session:
            total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
            rows = session.scalars(
                stmt.order_by(SensorDefinitionRow.sensor_id)
                .offset(page.offset)
                .limit(page.page_size)
            ).all()
            return total, [_to_snapshot(row) for row in rows]

    def insert(
        self,
        snapshot: SensorDefinitionOut,
        cancel: Optional[threading.Event] = None,
    ) -> SensorDefinitionOut:
        """Persist a new definition; the unique index arbitrates duplicate keys."""
        row = SensorDefinitionRow(id=snapshot.id, sensor_id=snapshot.sensor_id)
        for field in _MUTABLE_FIELDS:
            setattr(row, field, getattr(snapshot, field))

        try:
            with self._sessions.begin() as session:
                session.add(row)
                session.flush()
                _raise_if_cancelled(cancel)
        except IntegrityError as exc:
            raise ConflictError(f"SensorId '{snapshot.sensor_id}' already exists") from exc
        return _to_snapshot(row)

    def update(
        self,
        key: SensorKey,
        change: SnapshotChange,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[SensorDefinitionOut]:
        """Apply ``change`` to the current snapshot inside one transaction.

        Returns ``None`` when no row matches ``key``.
        """
        with self._sessions.begin() as session:
            row = self._lookup(session, key, for_update=True)
            if row is None:
                return None
            changed = change(_to_snapshot(row))
            for field in _MUTABLE_FIELDS:
                setattr(row, field, getattr(changed, field))
            session.flush()
            _raise_if_cancelled(cancel)
        return _to_snapshot(row)

    def delete(
        self,
        key: SensorKey,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """Remove the matching row and return its sensor id, or ``None``."""
        with self._sessions.begin() as session:
            row = self._lookup(session, key, for_update=True)
            if row is None:
                return None
            sensor_id = row.sensor_id
            session.delete(row)
            session.flush()
            _raise_if_cancelled(cancel)
        return sensor_id

    def seed_defaults(self) -> int:
        """Insert the demo definitions that are not present yet."""
        inserted = 0
        for seed in _SEEDS:
            if self.exists(seed.sensor_id):
                continue
            try:
                self.insert(seed)
            except ConflictError:
                continue
            inserted += 1
            logger.info("Seeded default sensor definition", extra={"sensor_id": seed.sensor_id})
        return inserted

    @staticmethod
    def _lookup(
        session: Session, key: SensorKey, for_update: bool = False
    ) -> Optional[SensorDefinitionRow]:
        if key.kind is KeyKind.row_id:
            try:
                row_id = uuid.UUID(key.value)
            except ValueError:
                return None
            stmt = select(SensorDefinitionRow).where(SensorDefinitionRow.id == row_id)
        else:
            stmt = select(SensorDefinitionRow).where(SensorDefinitionRow.sensor_id == key.value)
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()


def _ensure_sqlite_directory(url: str) -> None:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return
    database = parsed.database
    if not database or database == ":memory:":
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def build_default_store(url: Optional[str] = None) -> SensorStore:
    settings = get_settings()
    database_url = settings.database_url if url is None else url
    _ensure_sqlite_directory(database_url)
    engine = create_engine(database_url, pool_pre_ping=True, future=True)
    logger.info("Created database engine for %s", make_url(database_url).render_as_string(hide_password=True))
    return SensorStore(engine)
