# adpulse/models/project.py
# Объявляем Base и модели проекта. Все остальные модели берут Base отсюда.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)

    # чаты: внутренний (админский) и клиентский
    admin_chat_id = Column(String(64), nullable=True)
    client_chat_id = Column(String(64), nullable=True)
    thread_id = Column(Integer, nullable=True)            # forum-топик в клиентском чате
    require_topic = Column(Boolean, default=False, nullable=False)

    ad_account_id = Column(String(64), nullable=True)     # act_...

    # биллинг
    billing_status = Column(String(16), default="active", nullable=False)  # active|pending|overdue|blocked
    next_payment_date = Column(DateTime, nullable=True)   # naive UTC
    tariff = Column(Float, default=0.0, nullable=False)
    currency = Column(String(8), default="USD", nullable=False)
    auto_off = Column(Boolean, default=False, nullable=False)
    auto_off_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, default=1, nullable=False)


class AutoReportSettings(Base):
    __tablename__ = "autoreport_settings"

    project_id = Column(String(64), ForeignKey("projects.id"), primary_key=True)
    enabled = Column(Boolean, default=False, nullable=False)
    times = Column(JSON, default=list, nullable=False)    # ["09:00", "18:30"], UTC
    monday_double_report = Column(Boolean, default=False, nullable=False)
    last_sent_daily = Column(DateTime, nullable=True)
    last_sent_monday = Column(DateTime, nullable=True)
    alerts_target = Column(String(8), default="admin", nullable=False)  # admin|chat|both

    # алерты: флаги и то, что видел прошлый проход (алерт шлётся на переходе)
    alert_payment = Column(Boolean, default=True, nullable=False)
    alert_budget = Column(Boolean, default=True, nullable=False)
    alert_pause = Column(Boolean, default=True, nullable=False)
    last_billing_status = Column(String(16), nullable=True)
    last_spend = Column(Float, nullable=True)                   # расход за сегодня на прошлом замере
    meta_status = Column(String(8), nullable=True)              # ok|paused|missing|error

    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, default=1, nullable=False)


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), ForeignKey("projects.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    phone = Column(String(64), nullable=True)
    source = Column(String(64), nullable=False, default="meta")
    status = Column(String(10), nullable=False, default="new")  # new|done
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
