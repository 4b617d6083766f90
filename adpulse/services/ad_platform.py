# adpulse/services/ad_platform.py
"""Клиент Meta Marketing API: рекламные аккаунты, расход и кампании."""
from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable

import httpx

from adpulse.core.errors import UpstreamUnavailable, ValidationError

log = logging.getLogger(__name__)

# окно отчёта -> date_preset Graph API
DATE_PRESETS = {
    "today": "today",
    "yesterday": "yesterday",
    "last_7d": "last_7d",
}
CAMPAIGNS_LIMIT = 25
MAX_PAGES = 5


@dataclass
class Campaign:
    id: str
    name: str
    status: str = ""
    effective_status: str = ""
    updated_time: str | None = None


@dataclass
class AdAccount:
    id: str
    name: str
    currency: str = "USD"
    status: int | None = None
    spend: float = 0.0
    campaigns: list[Campaign] = field(default_factory=list)


class CampaignCache:
    """
    LRU с ограничением размера и TTL на запись. Владеет им вызывающий код,
    глобального экземпляра нет.
    """

    def __init__(self, max_size: int = 256, ttl_seconds: float = 600.0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.max_size = max(0, int(max_size))
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._items: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def get(self, key: Hashable) -> Any | None:
        item = self._items.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            del self._items[key]
            return None
        self._items.move_to_end(key)
        return value

    def put(self, key: Hashable, value: Any) -> None:
        if self.max_size == 0 or self.ttl_seconds <= 0:
            return
        self._items[key] = (self._clock() + self.ttl_seconds, value)
        self._items.move_to_end(key)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_account(item: dict[str, Any]) -> AdAccount:
    insights = (item.get("insights") or {}).get("data") or []
    spend = sum(_to_float(row.get("spend")) for row in insights)
    campaigns = [
        Campaign(
            id=str(c.get("id", "")),
            name=str(c.get("name") or c.get("id") or ""),
            status=str(c.get("status") or ""),
            effective_status=str(c.get("effective_status") or ""),
            updated_time=c.get("updated_time"),
        )
        for c in (item.get("campaigns") or {}).get("data") or []
    ]
    return AdAccount(
        id=str(item.get("id", "")),
        name=str(item.get("name") or item.get("id") or ""),
        currency=str(item.get("currency") or "USD"),
        status=_to_int(item.get("account_status")),
        spend=round(spend, 2),
        campaigns=campaigns,
    )


def index_accounts(accounts: list[AdAccount] | None) -> dict[str, AdAccount]:
    out: dict[str, AdAccount] = {}
    for acc in accounts or []:
        out[acc.id] = acc
        # в проекте id может храниться и с префиксом act_, и без
        out[acc.id.removeprefix("act_")] = acc
    return out


def _error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    err = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return f"HTTP {resp.status_code}: {err['message']}"
    return f"HTTP {resp.status_code}"


class MetaAdsClient:
    """
    fetch_accounts_and_campaigns отличает «сервис недоступен»
    (UpstreamUnavailable) от «аккаунтов нет» (пустой список).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        cache: CampaignCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = cache
        self._transport = transport

    def _cache_key(self, token: str, window: str) -> tuple[str, str]:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return digest, window

    async def fetch_accounts_and_campaigns(self, token: str, window: str = "today") -> list[AdAccount]:
        if window not in DATE_PRESETS:
            raise ValidationError(f"Unknown report window: {window}")
        if not token:
            raise UpstreamUnavailable("meta", "Meta OAuth не настроен")

        key = self._cache_key(token, window)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        preset = DATE_PRESETS[window]
        params: dict[str, Any] | None = {
            "fields": (
                "id,name,currency,account_status,"
                f"insights.date_preset({preset}){{spend}},"
                f"campaigns.limit({CAMPAIGNS_LIMIT}){{id,name,status,effective_status,updated_time}}"
            ),
            "limit": 50,
            "access_token": token,
        }
        url: str | None = f"{self.base_url}/me/adaccounts"
        accounts: list[AdAccount] = []

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                pages = 0
                while url and pages < MAX_PAGES:
                    resp = await client.get(url, params=params)
                    if resp.status_code >= 400:
                        raise UpstreamUnavailable("meta", _error_message(resp))
                    try:
                        payload = resp.json()
                    except ValueError as exc:
                        raise UpstreamUnavailable("meta", "invalid JSON in response") from exc
                    if not isinstance(payload, dict):
                        raise UpstreamUnavailable("meta", "unexpected response shape")
                    if payload.get("error"):
                        raise UpstreamUnavailable("meta", str(payload["error"].get("message") or payload["error"]))
                    accounts.extend(_parse_account(item) for item in payload.get("data") or [])
                    # next уже содержит все параметры запроса
                    url = (payload.get("paging") or {}).get("next")
                    params = None
                    pages += 1
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable("meta", "request timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable("meta", str(exc) or exc.__class__.__name__) from exc

        log.debug("meta_accounts_fetched window=%s count=%s", window, len(accounts))
        if self.cache is not None:
            self.cache.put(key, accounts)
        return accounts
