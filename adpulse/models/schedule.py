# adpulse/models/schedule.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from adpulse.models.project import Base

REPORT_TYPES = ("summary", "detailed", "finance", "sla")


class ReportSchedule(Base):
    __tablename__ = "report_schedules"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, default="")
    type = Column(String(16), nullable=False, default="summary")     # summary|detailed|finance|sla

    # расписание
    frequency = Column(String(10), nullable=False, default="daily")  # daily|weekly
    time = Column(String(5), nullable=False, default="09:00")        # HH:MM, локальное время расписания
    timezone = Column(String(10), nullable=True)                     # "+05:00" | "Z"
    weekdays = Column(JSON, nullable=False, default=list)            # 0=вс ... 6=сб, пусто = каждый день

    project_ids = Column(JSON, nullable=False, default=list)
    chat_id = Column(String(64), nullable=True)
    format = Column(String(10), nullable=False, default="text")      # text|xlsx
    enabled = Column(Boolean, nullable=False, default=True)

    # поля ниже пишет только ScheduleRunner
    last_run_at = Column(DateTime, nullable=True)
    last_status = Column(String(10), nullable=True)                  # success|error
    last_error = Column(Text, nullable=True)
    next_run_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, default=1, nullable=False)


class ReportDelivery(Base):
    """Журнал доставок. Строка пишется один раз и больше не меняется."""

    __tablename__ = "report_deliveries"

    id = Column(String(64), primary_key=True)
    schedule_id = Column(String(64), index=True, nullable=False)
    report_id = Column(String(64), nullable=True)
    type = Column(String(16), nullable=False)
    channel = Column(String(16), nullable=False, default="telegram")
    status = Column(String(10), nullable=False)                      # success|error
    delivered_at = Column(DateTime, nullable=False, index=True)
    error = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
