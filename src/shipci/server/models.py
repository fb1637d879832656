from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Run(Base):
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    pipeline: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event: Mapped[str] = mapped_column(sa.Text, nullable=False)
    ref: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    sha: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    repository: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    # queued | running | passed | failed
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=now_utc, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)


class JobRecord(Base):
    __tablename__ = "jobs"
    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    run_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    job_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    target: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    failed_step: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    assets: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    logs: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
