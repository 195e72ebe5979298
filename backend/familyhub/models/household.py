"""Household tables owned by the CRUD side of the app; read here."""
import uuid
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column

from familyhub.core.db import Base
from familyhub.utils.timezone import utcnow


class Chore(Base):
    __tablename__ = "chores"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class ShoppingListChange(Base):
    __tablename__ = "shopping_list_changes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    # 'added' | 'removed' | 'completed'
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)


class FamilyMember(Base):
    __tablename__ = "family_members"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # The account that manages this member and receives their reminders
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    birthday: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    birthday: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class Routine(Base):
    __tablename__ = "routines"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    # 'morning' | 'evening' | 'custom'
    routine_type: Mapped[str] = mapped_column(String(16), nullable=False, default="custom")
    # Household-local wall clock time
    scheduled_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_reminder_sent: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # 'daily' | 'weekdays' | 'weekends' | 'custom'
    schedule_type: Mapped[str] = mapped_column(String(16), nullable=False, default="daily")
    # Days for 'custom', 0 = Sunday through 6 = Saturday
    schedule_days: Mapped[Optional[list[int]]] = mapped_column(JSON, nullable=True)


class RoutineStep(Base):
    __tablename__ = "routine_steps"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    routine_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("routines.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class RoutineMember(Base):
    __tablename__ = "routine_members"

    routine_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("routines.id", ondelete="CASCADE"), primary_key=True)
    member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("family_members.id", ondelete="CASCADE"), primary_key=True)


class TaskCategory(Base):
    __tablename__ = "task_categories"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # 'low' | 'normal' | 'high' | 'urgent'
    urgency: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    # 'pending' | 'snoozed' | 'in_progress' | 'completed' | 'archived'
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    assignee_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("family_members.id"), nullable=True)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("task_categories.id"), nullable=True)


class TaskReminder(Base):
    """A reminder the task planner scheduled; this side only delivers it."""

    __tablename__ = "task_reminders"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    context_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # 'pending' | 'sent' | 'failed' | 'skipped'
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
