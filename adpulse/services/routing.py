# adpulse/services/routing.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from adpulse.core.errors import NotFoundError
from adpulse.models.project import Project

log = logging.getLogger(__name__)

TARGET_MODES = ("admin", "chat", "both")


@dataclass(frozen=True)
class DeliveryRoute:
    chat_id: str
    thread_id: int | None = None


def ensure_chat_id(value) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value))
    value = str(value).strip()
    return value or None


def build_thread_index(projects: Iterable[Project]) -> dict[str, int]:
    """Клиентский чат -> forum-топик проекта. Строится один раз на проход."""
    index: dict[str, int] = {}
    for project in projects:
        chat_id = ensure_chat_id(project.client_chat_id)
        if chat_id and isinstance(project.thread_id, int):
            index[chat_id] = project.thread_id
    return index


def collect_targets(project: Project, mode: str | None) -> list[DeliveryRoute]:
    """
    admin: внутренний чат проекта, chat: клиентский (с топиком),
    both: объединение без дублей.
    """
    if mode not in TARGET_MODES:
        mode = "admin"
    admin_chat = ensure_chat_id(project.admin_chat_id)
    client_chat = ensure_chat_id(project.client_chat_id)
    routes: list[DeliveryRoute] = []
    seen: set[str] = set()
    if mode in ("admin", "both") and admin_chat:
        routes.append(DeliveryRoute(admin_chat))
        seen.add(admin_chat)
    if mode in ("chat", "both") and client_chat and client_chat not in seen:
        routes.append(DeliveryRoute(client_chat, project.thread_id))
    return routes


def client_route(project: Project) -> DeliveryRoute:
    """
    Маршрут в клиентский чат. Если проект требует forum-топик, а его нет, то NotFoundError.
    """
    chat_id = ensure_chat_id(project.client_chat_id)
    if not chat_id:
        raise NotFoundError(f"project {project.id} has no client chat")
    if project.require_topic and project.thread_id is None:
        raise NotFoundError(f"project {project.id}: forum topic not found in chat {chat_id}")
    return DeliveryRoute(chat_id, project.thread_id)


def resolve_reminder_route(project: Project) -> tuple[DeliveryRoute, DeliveryRoute | None]:
    """
    Напоминания уходят в админский чат; клиентский маршрут нужен для
    уведомления об автоотключении. Без обоих чатов NotFoundError.
    """
    admin_chat = ensure_chat_id(project.admin_chat_id)
    client = None
    if ensure_chat_id(project.client_chat_id):
        client = client_route(project)
    if admin_chat:
        return DeliveryRoute(admin_chat), client
    if client is not None:
        # нет внутреннего чата, пишем в клиентский
        return client, client
    raise NotFoundError(f"project {project.id} has no chat to deliver reminders")
