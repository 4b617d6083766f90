# adpulse/models/reminder.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from adpulse.models.project import Base

STATUSES = ("pending", "upcoming", "overdue")
STAGES = ("pending", "admin_notified", "awaiting_admin_confirmation", "declined", "completed")
# стадии, на которых напоминание «успокоилось»
SETTLED_STAGES = frozenset({"pending", "declined", "completed"})
METHODS = ("transfer", "cash")


class PaymentReminder(Base):
    __tablename__ = "payment_reminders"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), unique=True, index=True, nullable=False)

    status = Column(String(10), nullable=False, default="pending")   # считается от due_date каждый проход
    stage = Column(String(32), nullable=False, default="pending")    # позиция в ручном воркфлоу
    method = Column(String(10), nullable=True)                       # transfer|cash|None
    due_date = Column(DateTime, nullable=True)

    notified_count = Column(Integer, nullable=False, default=0)
    last_notified_at = Column(DateTime, nullable=True)
    next_follow_up_at = Column(DateTime, nullable=True)

    admin_chat_id = Column(String(64), nullable=True)
    client_chat_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=True)                          # None = ещё не в БД


LEAD_REMINDER_STATUSES = ("pending", "notified")


class LeadReminder(Base):
    """Одна запись на лид, который ждёт ответа дольше порога."""

    __tablename__ = "lead_reminders"

    id = Column(String(64), primary_key=True)
    lead_id = Column(String(64), unique=True, index=True, nullable=False)
    project_id = Column(String(64), index=True, nullable=False)

    status = Column(String(10), nullable=False, default="pending")   # pending|notified
    notified_count = Column(Integer, nullable=False, default=0)
    last_notified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=True)                          # None = ещё не в БД
