"""adpulse: плановые отчёты, автоотчёты и напоминания об оплате для рекламных проектов."""

__version__ = "0.1.0"
