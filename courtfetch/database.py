"""Database models and setup for query logs, cases, parties and orders."""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Engine, ForeignKey, Integer, String, Text, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool


class DatabaseError(Exception):
    """Raised when the database cannot be opened or migrated."""


def _now() -> datetime:
    return datetime.now()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class Base(DeclarativeBase):
    """Declarative base; unset columns start at their zero values."""

    _zero_values: dict = {}

    def __init__(self, **kwargs: Any):
        cls = type(self)
        for key, value in {**self._zero_values, **kwargs}.items():
            if not hasattr(cls, key):
                raise TypeError(f"{key!r} is an invalid keyword argument for {cls.__name__}")
            setattr(self, key, value)


class _Model:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=_now, onupdate=_now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    def _model_dict(self) -> dict[str, Any]:
        return {
            "ID": self.id or 0,
            "CreatedAt": _iso(self.created_at),
            "UpdatedAt": _iso(self.updated_at),
            "DeletedAt": _iso(self.deleted_at),
        }


class QueryLog(_Model, Base):
    """One search made against the court website."""

    __tablename__ = "query_logs"
    _zero_values = {
        "case_type": "",
        "case_number": "",
        "filing_year": "",
        "raw_response": "",
        "success": False,
        "error_message": "",
        "ip_address": "",
    }

    case_type: Mapped[str] = mapped_column(String, default="")
    case_number: Mapped[str] = mapped_column(String, default="")
    filing_year: Mapped[str] = mapped_column(String, default="")
    raw_response: Mapped[str] = mapped_column(Text, default="")
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    error_message: Mapped[str] = mapped_column(String, default="")
    query_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ip_address: Mapped[str] = mapped_column(String, default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._model_dict(),
            "case_type": self.case_type or "",
            "case_number": self.case_number or "",
            "filing_year": self.filing_year or "",
            "raw_response": self.raw_response or "",
            "success": bool(self.success),
            "error_message": self.error_message or "",
            "query_time": _iso(self.query_time),
            "ip_address": self.ip_address or "",
        }


class CaseInfo(_Model, Base):
    """Details of a court case with its parties and orders."""

    __tablename__ = "case_infos"
    _zero_values = {
        "query_log_id": 0,
        "case_number": "",
        "case_type": "",
        "filing_year": "",
        "status": "",
        "judge": "",
        "court_complex": "",
    }

    query_log_id: Mapped[int] = mapped_column(Integer, default=0)
    case_number: Mapped[str] = mapped_column(String, default="", index=True)
    case_type: Mapped[str] = mapped_column(String, default="")
    filing_year: Mapped[str] = mapped_column(String, default="")
    filing_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_hearing: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String, default="")
    judge: Mapped[str] = mapped_column(String, default="")
    court_complex: Mapped[str] = mapped_column(String, default="")
    parties: Mapped[list["Party"]] = relationship("Party", lazy="selectin")
    orders: Mapped[list["Order"]] = relationship("Order", lazy="selectin")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._model_dict(),
            "query_log_id": self.query_log_id or 0,
            "case_number": self.case_number or "",
            "case_type": self.case_type or "",
            "filing_year": self.filing_year or "",
            "filing_date": _iso(self.filing_date),
            "next_hearing": _iso(self.next_hearing),
            "status": self.status or "",
            "judge": self.judge or "",
            "court_complex": self.court_complex or "",
            "parties": [party.to_dict() for party in self.parties],
            "orders": [order.to_dict() for order in self.orders],
        }


class Party(_Model, Base):
    """A petitioner or respondent in a case."""

    __tablename__ = "parties"
    _zero_values = {"name": "", "type": "", "advocate_name": "", "advocate_code": ""}

    case_info_id: Mapped[Optional[int]] = mapped_column(ForeignKey("case_infos.id"), nullable=True)
    name: Mapped[str] = mapped_column(String, default="")
    type: Mapped[str] = mapped_column(String, default="")
    advocate_name: Mapped[str] = mapped_column(String, default="")
    advocate_code: Mapped[str] = mapped_column(String, default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._model_dict(),
            "case_info_id": self.case_info_id or 0,
            "name": self.name or "",
            "type": self.type or "",
            "advocate_name": self.advocate_name or "",
            "advocate_code": self.advocate_code or "",
        }


class Order(_Model, Base):
    """A court order or judgment, possibly with a PDF."""

    __tablename__ = "orders"
    _zero_values = {
        "description": "",
        "pdf_link": "",
        "order_type": "",
        "judge_name": "",
        "downloaded": False,
        "local_path": "",
    }

    case_info_id: Mapped[Optional[int]] = mapped_column(ForeignKey("case_infos.id"), nullable=True)
    order_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    description: Mapped[str] = mapped_column(String, default="")
    pdf_link: Mapped[str] = mapped_column(String, default="")
    order_type: Mapped[str] = mapped_column(String, default="")
    judge_name: Mapped[str] = mapped_column(String, default="")
    downloaded: Mapped[bool] = mapped_column(Boolean, default=False)
    local_path: Mapped[str] = mapped_column(String, default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._model_dict(),
            "case_info_id": self.case_info_id or 0,
            "order_date": _iso(self.order_date),
            "description": self.description or "",
            "pdf_link": self.pdf_link or "",
            "order_type": self.order_type or "",
            "judge_name": self.judge_name or "",
            "downloaded": bool(self.downloaded),
            "local_path": self.local_path or "",
        }


def migrate(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise DatabaseError(f"failed to run migrations: {exc}") from exc


_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_case_info_search ON case_infos(case_type, case_number, filing_year)",
    "CREATE INDEX IF NOT EXISTS idx_query_logs_time ON query_logs(query_time)",
    "CREATE INDEX IF NOT EXISTS idx_orders_date ON orders(order_date)",
)


def run_migrations(engine: Engine) -> None:
    """Create the search indexes on existing tables."""
    try:
        with engine.begin() as connection:
            for statement in _INDEXES:
                connection.execute(text(statement))
    except SQLAlchemyError as exc:
        raise DatabaseError(f"failed to create indexes: {exc}") from exc


def initialize(db_path: str | os.PathLike) -> Engine:
    """Open the SQLite database at ``db_path``, creating its directory and tables."""
    path = os.fspath(db_path)
    if path == ":memory:":
        engine = create_engine(
            "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
    else:
        directory = os.path.dirname(path)
        if directory:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as exc:
                raise DatabaseError(f"failed to create database directory: {exc}") from exc
        engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})

    try:
        with engine.connect():
            pass
    except SQLAlchemyError as exc:
        raise DatabaseError(f"failed to connect to database: {exc}") from exc

    migrate(engine)
    return engine