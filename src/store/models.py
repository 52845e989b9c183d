"""SQLAlchemy ORM models for task persistence."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TaskRow(Base):
    """Embellishment task - one batch job over a resource."""

    __tablename__ = "embellishment_tasks"
    __table_args__ = (
        Index("ix_embellishment_tasks_resource_status", "resource_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    method: Mapped[str] = mapped_column(String(255), nullable=False)
    parameter_overrides: Mapped[dict] = mapped_column(JSON, default=dict)
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    completed_items: Mapped[int] = mapped_column(Integer, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(
        Enum(
            "created", "running", "completed", "failed", "cancelled",
            name="embellishment_task_status",
        ),
        default="created",
    )
    result_container_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    items: Mapped[list["TaskItemRow"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskItemRow.index",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"TaskRow(id={self.id}, type={self.type}, status={self.status})"


class TaskItemRow(Base):
    """One unit of work inside a task, keyed by (task_id, index)."""

    __tablename__ = "embellishment_task_items"

    task_id: Mapped[str] = mapped_column(
        ForeignKey("embellishment_tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    index: Mapped[int] = mapped_column("item_index", Integer, primary_key=True)
    external_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    result_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        Enum(
            "pending", "processing", "completed", "failed",
            name="embellishment_item_status",
        ),
        default="pending",
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    task: Mapped["TaskRow"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"TaskItemRow(task_id={self.task_id}, index={self.index}, status={self.status})"
