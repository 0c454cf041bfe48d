"""
ORM tables for licenses, daily limits, warm-up settings, bot status and the
activity log.

The ORM rows never leave licensing.store; everything above the storage
adapter works with the typed records in licensing.models.
"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from licensing.db import Base


class LicenseRow(Base):
    """One license per registered principal."""

    __tablename__ = "licenses"

    principal_id = Column(String(64), primary_key=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    license_key = Column(String(64), unique=True, nullable=False, index=True)

    tier = Column(String(32), nullable=False, default="trial")
    is_active = Column(Boolean, nullable=False, default=True)
    activated_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Permission set copied from the catalog at tier assignment
    max_daily_connections = Column(Integer, nullable=False, default=5)
    max_daily_messages = Column(Integer, nullable=False, default=3)
    max_search_keywords = Column(Integer, nullable=False, default=3)
    can_use_advanced_features = Column(Boolean, nullable=False, default=False)
    can_export_data = Column(Boolean, nullable=False, default=False)
    can_use_api = Column(Boolean, nullable=False, default=False)

    # Daily counters, zeroed by the nightly reset
    connections_used = Column(Integer, nullable=False, default=0)
    messages_used = Column(Integer, nullable=False, default=0)
    searches_used = Column(Integer, nullable=False, default=0)
    profile_views_used = Column(Integer, nullable=False, default=0)

    # Lifetime counters, never reset
    total_sessions = Column(Integer, nullable=False, default=0)
    total_connections = Column(Integer, nullable=False, default=0)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    last_device_id = Column(String(255), nullable=True)
    last_ip = Column(String(64), nullable=True)
    last_user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<LicenseRow(principal_id={self.principal_id}, tier={self.tier}, is_active={self.is_active})>"


class DailyLimitsRow(Base):
    __tablename__ = "daily_limits"

    principal_id = Column(String(64), primary_key=True)
    max_connections = Column(Integer, nullable=False)
    max_messages = Column(Integer, nullable=False)
    max_profile_views = Column(Integer, nullable=False)
    max_searches = Column(Integer, nullable=False)
    respect_warmup = Column(Boolean, nullable=False, default=True)
    daily_reset = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class WarmupSettingsRow(Base):
    __tablename__ = "warmup_settings"

    principal_id = Column(String(64), primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    override_warmup = Column(Boolean, nullable=False, default=False)
    phase = Column(String(16), nullable=False, default="auto")
    account_start_date = Column(DateTime(timezone=True), nullable=False)
    # {"week1": {"daily": 2, "weekly": 10}, ...}
    phase_limits = Column(JSON, nullable=False)
    total_connections = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BotStatusRow(Base):
    __tablename__ = "bot_status"

    principal_id = Column(String(64), primary_key=True)
    status = Column(String(16), nullable=False, default="stopped")
    last_start_time = Column(DateTime(timezone=True), nullable=True)
    last_stop_time = Column(DateTime(timezone=True), nullable=True)
    current_task = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ActivityLogRow(Base):
    """Append-only automation events. Rows are never updated."""

    __tablename__ = "activity_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    principal_id = Column(String(64), nullable=False, index=True)
    action_type = Column(String(32), nullable=False)
    success = Column(Boolean, nullable=False, default=False)
    target_profile = Column(String(255), nullable=False, default="")
    profile_url = Column(String(512), nullable=False, default="")
    search_keyword = Column(String(255), nullable=False, default="")
    message = Column(Text, nullable=False, default="")
    context = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index("ix_activity_log_action_success", "action_type", "success"),
        Index("ix_activity_log_principal_timestamp", "principal_id", "timestamp"),
    )
