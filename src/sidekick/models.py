from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import Mapped, Session, declarative_base, mapped_column, sessionmaker

from .config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class Preference(Base):
    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class ActionStat(Base):
    __tablename__ = "action_stats"

    action_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class EngineLog(Base):
    __tablename__ = "engine_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    level: Mapped[str] = mapped_column(String(16))
    message: Mapped[str] = mapped_column(Text)


def log_engine_event(session: Session, level: str, message: str) -> None:
    log = EngineLog(level=level, message=message)
    session.add(log)
    session.commit()


def make_session_factory(database_url: str) -> sessionmaker:
    """Build an isolated engine + session factory, creating the tables on first use."""

    bind = create_engine(database_url, **_engine_kwargs(database_url))
    Base.metadata.create_all(bind)
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


def init_db() -> None:
    Base.metadata.create_all(engine)
