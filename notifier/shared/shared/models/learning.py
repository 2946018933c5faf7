"""Learning records owned by the course platform, read by the recipient queries."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str | None] = mapped_column(String, default=None)
    description: Mapped[str | None] = mapped_column(String, default=None)
    status: Mapped[str] = mapped_column(String, default="draft")  # draft | published | archived
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)


class CourseProgress(Base):
    __tablename__ = "course_progress"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"))
    progress: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    completed: Mapped[bool] = mapped_column(default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)


class Certificate(Base):
    __tablename__ = "certificates"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"))
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)


class Enrollment(Base):
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"))
    completed: Mapped[bool] = mapped_column(default=False)
    last_accessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
