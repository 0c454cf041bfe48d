from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Dict, Optional

from licensing.config import get_bot_status_cache_ttl, get_redis_url
from licensing.models import BotStatusRecord

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1


class BotStatusCache:
    """Redis-backed bot status cache with in-memory fallback."""

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None, client=None) -> None:
        self._ttl_seconds = ttl_seconds if ttl_seconds is not None else get_bot_status_cache_ttl()
        self._redis = client
        self._mem: Dict[str, tuple[float, dict]] = {}
        redis_url = redis_url or get_redis_url()

        if self._redis is None and redis_url:
            try:
                import redis

                self._redis = redis.from_url(redis_url, decode_responses=True)
                self._redis.ping()
            except Exception:
                logger.warning("Redis unavailable, bot status cache using memory", exc_info=True)
                self._redis = None

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    @staticmethod
    def _require_principal_id(principal_id: str) -> str:
        normalized = str(principal_id).strip()
        if not normalized:
            raise ValueError("principal_id is required")
        return normalized

    @staticmethod
    def _key(principal_id: str) -> str:
        return f"bot_status:v1:{principal_id}"

    def get(self, principal_id: str) -> Optional[BotStatusRecord]:
        key = self._key(self._require_principal_id(principal_id))

        if self._redis is not None:
            raw = self._redis.get(key)
            if not raw:
                return None
            return _decode_status(json.loads(raw))

        data = self._mem.get(key)
        if not data:
            return None

        cached_at, payload = data
        if time.monotonic() - cached_at > self._ttl_seconds:
            self._mem.pop(key, None)
            return None
        return _decode_status(payload)

    def set(self, record: BotStatusRecord, *, ttl_seconds: Optional[int] = None) -> None:
        key = self._key(self._require_principal_id(record.principal_id))
        ttl = ttl_seconds or self._ttl_seconds
        payload = _encode_status(record)

        if self._redis is not None:
            self._redis.setex(key, ttl, json.dumps(payload))
            return

        self._mem[key] = (time.monotonic(), payload)

    def invalidate(self, principal_id: str) -> None:
        key = self._key(self._require_principal_id(principal_id))
        if self._redis is not None:
            self._redis.delete(key)
        self._mem.pop(key, None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _encode_status(record: BotStatusRecord) -> dict:
    return {
        "schema_version": CACHE_SCHEMA_VERSION,
        "principal_id": record.principal_id,
        "status": record.status.value,
        "last_start_time": _iso(record.last_start_time),
        "last_stop_time": _iso(record.last_stop_time),
        "current_task": record.current_task,
        "error_message": record.error_message,
    }


def _decode_status(raw: dict) -> BotStatusRecord:
    if int(raw.get("schema_version", CACHE_SCHEMA_VERSION)) != CACHE_SCHEMA_VERSION:
        raise ValueError("Unsupported bot status cache schema version")

    return BotStatusRecord(
        principal_id=raw["principal_id"],
        status=raw["status"],
        last_start_time=_parse(raw.get("last_start_time")),
        last_stop_time=_parse(raw.get("last_stop_time")),
        current_task=raw.get("current_task"),
        error_message=raw.get("error_message"),
    )
