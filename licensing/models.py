from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Generic, Literal, Mapping, Optional, TypeVar

Tier = Literal["trial", "basic", "premium", "enterprise"]
WarmupPhase = Literal["week1", "week2", "week3", "week4plus"]

LICENSE_TIERS = ("trial", "basic", "premium", "enterprise")
WARMUP_PHASES = ("week1", "week2", "week3", "week4plus")
WARMUP_PHASE_SETTINGS = ("auto",) + WARMUP_PHASES


class ActionKind(str, Enum):
    """Actions a principal can ask the engine about."""

    CONNECTION = "connection"
    MESSAGE = "message"
    SEARCH = "search"
    PROFILE_VIEW = "profile_view"
    EXPORT_DATA = "export_data"
    API_ACCESS = "api_access"
    ADVANCED_FEATURES = "advanced_features"
    BOT_CONTROL = "bot_control"
    SESSION = "session"


QUOTA_ACTIONS = frozenset({
    ActionKind.CONNECTION,
    ActionKind.MESSAGE,
    ActionKind.SEARCH,
    ActionKind.PROFILE_VIEW,
})

FEATURE_ACTIONS = frozenset({
    ActionKind.EXPORT_DATA,
    ActionKind.API_ACCESS,
    ActionKind.ADVANCED_FEATURES,
})


class DenyReason(str, Enum):
    LICENSE_INACTIVE = "LICENSE_INACTIVE"
    LICENSE_EXPIRED = "LICENSE_EXPIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    WARMUP_LIMIT_EXCEEDED = "WARMUP_LIMIT_EXCEEDED"


class BotState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class ActivityType(str, Enum):
    CONNECTION_SENT = "connection_sent"
    CONNECTION_ATTEMPTED = "connection_attempted"
    DIRECT_MESSAGE_SENT = "direct_message_sent"
    PROFILE_VIEWED = "profile_viewed"
    SEARCH_PERFORMED = "search_performed"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (e.g. read back from SQLite) are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Decision:
    """Outcome of one authorization check."""

    allowed: bool
    action: ActionKind
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls, action: ActionKind) -> "Decision":
        return cls(allowed=True, action=action)

    @classmethod
    def deny(cls, action: ActionKind, reason: DenyReason) -> "Decision":
        return cls(allowed=False, action=action, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"allowed": self.allowed}
        if self.reason is not None:
            payload["reason"] = self.reason.value
        return payload


@dataclass(frozen=True)
class PermissionSet:
    """Permissions stored on a license. May diverge from the catalog after manual edits."""

    max_daily_connections: int
    max_daily_messages: int
    max_search_keywords: int
    can_use_advanced_features: bool = False
    can_export_data: bool = False
    can_use_api: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_daily_connections": self.max_daily_connections,
            "max_daily_messages": self.max_daily_messages,
            "max_search_keywords": self.max_search_keywords,
            "can_use_advanced_features": self.can_use_advanced_features,
            "can_export_data": self.can_export_data,
            "can_use_api": self.can_use_api,
        }


@dataclass(frozen=True)
class UsageCounters:
    connections_used: int = 0
    messages_used: int = 0
    searches_used: int = 0
    profile_views_used: int = 0
    total_sessions: int = 0
    total_connections: int = 0

    def used_for(self, action: ActionKind) -> int:
        if action == ActionKind.CONNECTION:
            return self.connections_used
        if action == ActionKind.MESSAGE:
            return self.messages_used
        if action == ActionKind.SEARCH:
            return self.searches_used
        if action == ActionKind.PROFILE_VIEW:
            return self.profile_views_used
        raise ValueError(f"{action.value} has no daily counter")

    def to_dict(self) -> Dict[str, int]:
        return {
            "connections_used": self.connections_used,
            "messages_used": self.messages_used,
            "searches_used": self.searches_used,
            "profile_views_used": self.profile_views_used,
            "total_sessions": self.total_sessions,
            "total_connections": self.total_connections,
        }


@dataclass(frozen=True)
class LicenseRecord:
    """Typed license snapshot for one principal."""

    principal_id: str
    username: str
    email: str
    license_key: str
    tier: str
    is_active: bool
    activated_at: datetime
    expires_at: datetime
    permissions: PermissionSet
    usage: UsageCounters = field(default_factory=UsageCounters)
    last_login_at: Optional[datetime] = None
    last_device_id: Optional[str] = None
    last_ip: Optional[str] = None
    last_user_agent: Optional[str] = None

    def __post_init__(self) -> None:
        principal_id = str(self.principal_id).strip()
        if not principal_id:
            raise ValueError("principal_id is required")
        if self.expires_at is None:
            raise ValueError("expires_at is required")
        object.__setattr__(self, "principal_id", principal_id)
        object.__setattr__(self, "activated_at", ensure_utc(self.activated_at))
        object.__setattr__(self, "expires_at", ensure_utc(self.expires_at))
        object.__setattr__(self, "last_login_at", ensure_utc(self.last_login_at))

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)

    def days_remaining(self, now: datetime) -> int:
        seconds = (self.expires_at - now).total_seconds()
        if seconds <= 0:
            return 0
        return int(-(-seconds // 86400))

    def to_dict(self, now: datetime) -> Dict[str, Any]:
        return {
            "principal_id": self.principal_id,
            "username": self.username,
            "email": self.email,
            "license_key": self.license_key,
            "tier": self.tier,
            "is_active": self.is_active,
            "activated_at": _iso(self.activated_at),
            "expires_at": _iso(self.expires_at),
            "is_valid": self.is_valid(now),
            "is_expired": self.is_expired(now),
            "days_remaining": self.days_remaining(now),
            "permissions": self.permissions.to_dict(),
            "usage": self.usage.to_dict(),
            "last_login_at": _iso(self.last_login_at),
        }


@dataclass(frozen=True)
class DailyLimits:
    """Caps currently enforced for a principal (never above the tier ceiling)."""

    principal_id: str
    max_connections: int
    max_messages: int
    max_profile_views: int
    max_searches: int
    daily_reset: datetime
    respect_warmup: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "daily_reset", ensure_utc(self.daily_reset))

    def cap_for(self, action: ActionKind) -> int:
        if action == ActionKind.CONNECTION:
            return self.max_connections
        if action == ActionKind.MESSAGE:
            return self.max_messages
        if action == ActionKind.SEARCH:
            return self.max_searches
        if action == ActionKind.PROFILE_VIEW:
            return self.max_profile_views
        raise ValueError(f"{action.value} has no daily cap")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal_id": self.principal_id,
            "max_connections": self.max_connections,
            "max_messages": self.max_messages,
            "max_profile_views": self.max_profile_views,
            "max_searches": self.max_searches,
            "respect_warmup": self.respect_warmup,
            "daily_reset": _iso(self.daily_reset),
        }


@dataclass(frozen=True)
class PhaseCaps:
    daily: int
    weekly: int

    def to_dict(self) -> Dict[str, int]:
        return {"daily": self.daily, "weekly": self.weekly}


DEFAULT_PHASE_LIMITS: Mapping[str, PhaseCaps] = MappingProxyType({
    "week1": PhaseCaps(daily=2, weekly=10),
    "week2": PhaseCaps(daily=3, weekly=15),
    "week3": PhaseCaps(daily=4, weekly=20),
    "week4plus": PhaseCaps(daily=5, weekly=25),
})


@dataclass(frozen=True)
class WarmupState:
    principal_id: str
    account_start_date: datetime
    enabled: bool = True
    override_warmup: bool = False
    phase: str = "auto"
    phase_limits: Mapping[str, PhaseCaps] = field(default_factory=lambda: DEFAULT_PHASE_LIMITS)
    total_connections: int = 0

    def __post_init__(self) -> None:
        if self.phase not in WARMUP_PHASE_SETTINGS:
            raise ValueError(f"phase must be one of: {', '.join(WARMUP_PHASE_SETTINGS)}")
        limits = dict(DEFAULT_PHASE_LIMITS)
        limits.update(self.phase_limits)
        object.__setattr__(self, "phase_limits", MappingProxyType(limits))
        object.__setattr__(self, "account_start_date", ensure_utc(self.account_start_date))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal_id": self.principal_id,
            "enabled": self.enabled,
            "override_warmup": self.override_warmup,
            "phase": self.phase,
            "account_start_date": _iso(self.account_start_date),
            "phase_limits": {key: caps.to_dict() for key, caps in self.phase_limits.items()},
            "total_connections": self.total_connections,
        }


T = TypeVar("T")


@dataclass(frozen=True)
class Materialized(Generic[T]):
    """A settings record plus whether defaults were just written for it."""

    record: T
    created: bool


@dataclass(frozen=True)
class EffectiveLimits:
    max_daily_connections: int
    max_daily_messages: int
    max_profile_views: int
    max_searches: int
    warmup_phase: str
    warmup_cap: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "max_daily_connections": self.max_daily_connections,
            "max_daily_messages": self.max_daily_messages,
            "max_profile_views": self.max_profile_views,
            "max_searches": self.max_searches,
            "warmup_phase": self.warmup_phase,
        }
        if self.warmup_cap is not None:
            payload["warmup_cap"] = self.warmup_cap
        return payload


@dataclass(frozen=True)
class BotStatusRecord:
    principal_id: str
    status: BotState = BotState.STOPPED
    last_start_time: Optional[datetime] = None
    last_stop_time: Optional[datetime] = None
    current_task: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", BotState(self.status))
        object.__setattr__(self, "last_start_time", ensure_utc(self.last_start_time))
        object.__setattr__(self, "last_stop_time", ensure_utc(self.last_stop_time))


@dataclass(frozen=True)
class StatusSnapshot:
    """Payload handed to the status-change hook on every transition."""

    principal_id: str
    is_active: bool
    status: BotState
    last_start_time: Optional[datetime]
    last_stop_time: Optional[datetime]
    current_task: Optional[str]
    connections_today: int
    total_connections: int
    error_message: Optional[str]
    uptime_seconds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal_id": self.principal_id,
            "is_active": self.is_active,
            "status": self.status.value,
            "last_start_time": _iso(self.last_start_time),
            "last_stop_time": _iso(self.last_stop_time),
            "current_task": self.current_task,
            "connections_today": self.connections_today,
            "total_connections": self.total_connections,
            "error_message": self.error_message,
            "uptime_seconds": self.uptime_seconds,
        }


@dataclass(frozen=True)
class ActivityEvent:
    principal_id: str
    action_type: ActivityType
    success: bool
    timestamp: datetime
    target_profile: str = ""
    profile_url: str = ""
    search_keyword: str = ""
    message: str = ""
    context: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "action_type", ActivityType(self.action_type))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
