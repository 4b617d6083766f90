# adpulse/models/__init__.py
from __future__ import annotations

from adpulse.models.project import AutoReportSettings, Base, Lead, Project
from adpulse.models.reminder import LeadReminder, PaymentReminder
from adpulse.models.schedule import ReportDelivery, ReportSchedule

__all__ = [
    "AutoReportSettings",
    "Base",
    "Lead",
    "LeadReminder",
    "PaymentReminder",
    "Project",
    "ReportDelivery",
    "ReportSchedule",
]
