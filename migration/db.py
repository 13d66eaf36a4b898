"""
Target (relational) store: table models and the SQLAlchemy-backed client.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    func,
    inspect,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


class TargetStore(Protocol):
    """Operations the migration layer needs from the relational store."""

    def count(self, model: type, where: dict[str, Any]) -> int:
        ...

    def find_many(
        self,
        model: type,
        where: dict[str, Any],
        *,
        order_by: str,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        ...

    def find_first(
        self, model: type, where: dict[str, Any], *, order_by: str
    ) -> Optional[dict[str, Any]]:
        ...

    def find_unique(self, model: type, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        ...

    def create(self, model: type, values: dict[str, Any]) -> None:
        ...

    def upsert(self, model: type, key: dict[str, Any], values: dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _conditions(model: type, where: dict[str, Any]) -> list[Any]:
    return [getattr(model, name) == value for name, value in where.items()]


def row_to_dict(row: Any) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, datetime):
            value = as_utc(value)
        values[column.key] = value
    return values


class PostgresTargetStore:
    """
    SQLAlchemy-backed target store. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    Tables are only created when asked for with ``create_schema``.
    """

    def __init__(self, database_url: str, *, create_schema: bool = False):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresTargetStore")
        engine_options: dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection so every thread sees the same in-memory database.
            engine_options.update(
                connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        else:
            engine_options["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_options)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_schema:
            self.create_schema()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def missing_tables(self) -> list[str]:
        inspector = inspect(self.engine)
        return [
            table.name
            for table in Base.metadata.sorted_tables
            if not inspector.has_table(table.name)
        ]

    def count(self, model: type, where: dict[str, Any]) -> int:
        with self.Session() as session:
            stmt = (
                select(func.count())
                .select_from(model)
                .where(*_conditions(model, where))
            )
            return int(session.execute(stmt).scalar_one())

    def find_many(
        self,
        model: type,
        where: dict[str, Any],
        *,
        order_by: str,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        column = getattr(model, order_by)
        with self.Session() as session:
            stmt = (
                select(model)
                .where(*_conditions(model, where))
                .order_by(
                    column.desc().nulls_last() if descending else column.asc().nulls_last()
                )
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [row_to_dict(row) for row in session.execute(stmt).scalars()]

    def find_first(
        self, model: type, where: dict[str, Any], *, order_by: str
    ) -> Optional[dict[str, Any]]:
        rows = self.find_many(model, where, order_by=order_by, descending=True, limit=1)
        return rows[0] if rows else None

    def find_unique(self, model: type, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        with self.Session() as session:
            row = session.execute(
                select(model).where(*_conditions(model, key))
            ).scalar_one_or_none()
            return row_to_dict(row) if row else None

    def create(self, model: type, values: dict[str, Any]) -> None:
        with self.Session() as session:
            session.add(model(**values))
            session.commit()

    def upsert(self, model: type, key: dict[str, Any], values: dict[str, Any]) -> None:
        with self.Session() as session:
            row = session.execute(
                select(model).where(*_conditions(model, key))
            ).scalar_one_or_none()
            if row:
                for name, value in values.items():
                    setattr(row, name, value)
            else:
                session.add(model(**{**values, **key}))
            session.commit()

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class PillarCheckInRow(Base):
    __tablename__ = "pillar_check_ins"

    id = Column(String(36), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    pillar_identifier = Column(String, nullable=False, index=True)
    value = Column(Integer, nullable=False, default=0)
    note = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class PillarScoreRow(Base):
    __tablename__ = "pillar_scores"
    __table_args__ = (
        UniqueConstraint("user_id", "pillar_identifier", name="uix_score_user_pillar"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    pillar_identifier = Column(String, nullable=False)
    score = Column(Float, nullable=False, default=50.0)
    trend = Column(String, nullable=False, default="stable")
    weekly_scores = Column(JSON(none_as_null=True), nullable=False, default=list)
    monthly_scores = Column(JSON(none_as_null=True), nullable=False, default=list)
    quick_wins = Column(JSON(none_as_null=True), nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, index=True)


class OnboardingProfileRow(Base):
    __tablename__ = "onboarding_profiles"

    user_id = Column(String, primary_key=True)
    doc = Column(JSON(none_as_null=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, index=True)


class UserCoreStateRow(Base):
    __tablename__ = "user_core_states"

    user_id = Column(String, primary_key=True)
    allowed_pillars = Column(JSON(none_as_null=True), nullable=True)
    pillars = Column(JSON(none_as_null=True), nullable=True)
    settings = Column(JSON(none_as_null=True), nullable=True)
    subscription_tier = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, index=True)


class ActionPlanRow(Base):
    __tablename__ = "action_plans"

    id = Column(String(36), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    pillar_identifier = Column(String, nullable=True, index=True)
    doc = Column(JSON(none_as_null=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class AiMessageRow(Base):
    __tablename__ = "ai_messages"

    id = Column(String(36), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=True, index=True)
    role = Column(String, nullable=False)
    content = Column(JSON(none_as_null=True), nullable=True)
    meta = Column(JSON(none_as_null=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True, index=True)
