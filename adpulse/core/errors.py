# adpulse/core/errors.py
from __future__ import annotations


class EngineError(Exception):
    """Базовая ошибка движка рассылок."""


class ValidationError(EngineError):
    """Кривые поля записи. Чинится дефолтами, не фатально."""


class UpstreamUnavailable(EngineError):
    """Внешний сервис (Meta, Telegram) не ответил или ответил ошибкой."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(message)
        self.service = service

    def __str__(self) -> str:
        return f"{self.service}: {self.args[0]}"


class NotFoundError(EngineError):
    """Нет проекта/чата/топика. Единица работы пропускается."""


class PersistenceError(EngineError):
    """Запись в хранилище не удалась, прогресс в памяти может потеряться."""
