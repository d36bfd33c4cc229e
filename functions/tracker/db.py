"""
SQLAlchemy-backed snapshot store for Postgres (SQLite works for tests).
"""

from __future__ import annotations

from datetime import timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime, String, create_engine, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tracker.errors import ConfigurationError, StorageUnavailable
from tracker.store import Clock, public_record, utcnow, validate_snapshot


_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlSnapshotStore:
    """
    Snapshot rows keyed by (sub, date). Upserts are a single
    INSERT ... ON CONFLICT statement, so racing writers for the same key
    resolve inside the database.
    """

    def __init__(self, database_url: str, clock: Clock = utcnow):
        if not database_url:
            raise ConfigurationError("DATABASE_URL is required for SqlSnapshotStore")
        self.clock = clock
        try:
            self.engine = create_engine(
                database_url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
        except (SQLAlchemyError, ImportError) as exc:
            raise ConfigurationError(f"cannot create engine: {exc}") from exc
        dialect = self.engine.dialect.name
        if dialect not in _UPSERT_DIALECTS:
            raise ConfigurationError(f"unsupported database dialect: {dialect}")
        self._insert = _UPSERT_DIALECTS[dialect]
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"cannot create tables: {exc}") from exc

    def _to_record(self, row: "SnapshotRow") -> dict:
        return public_record(
            {
                "date": row.date,
                **(row.data or {}),
                "createdAt": row.created_at,
                "updatedAt": row.updated_at,
            }
        )

    def list_snapshots(self, sub: str) -> list[dict]:
        try:
            with self.Session() as session:
                stmt = (
                    select(SnapshotRow)
                    .where(SnapshotRow.sub == sub)
                    .order_by(SnapshotRow.date.asc())
                )
                rows = session.execute(stmt).scalars().all()
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"list failed: {exc}") from exc

    def upsert_snapshot(self, sub: str, snapshot: Any) -> None:
        fields = validate_snapshot(snapshot)
        date = fields.pop("date")
        now = self.clock().astimezone(timezone.utc)
        stmt = self._insert(SnapshotRow).values(
            sub=sub,
            date=date,
            data=fields,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SnapshotRow.sub, SnapshotRow.date],
            set_={
                "data": stmt.excluded.data,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            with self.Session() as session:
                session.execute(stmt)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"upsert failed: {exc}") from exc

    def delete_snapshot(self, sub: str, date: str) -> None:
        try:
            with self.Session() as session:
                session.execute(
                    delete(SnapshotRow).where(
                        SnapshotRow.sub == sub, SnapshotRow.date == date
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"delete failed: {exc}") from exc

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class SnapshotRow(Base):
    __tablename__ = "snapshots"

    sub = Column(String, primary_key=True)
    date = Column(String, primary_key=True)
    # netWorth plus any caller-supplied fields
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
