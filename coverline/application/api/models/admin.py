"""
Admin API Models

Request models for the enterprise-only admin routes.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coverline.infrastructure.monitoring.metrics_recorder import parse_time_range


class AdminAction(str, Enum):
    """Administrative cache operations."""

    CLEAR_CACHE = "clear_cache"
    RESET_CACHE_STATS = "reset_cache_stats"


class AdminActionRequest(BaseModel):
    """Body of POST /api/admin/actions. Unknown actions fail validation."""

    action: AdminAction

    model_config = ConfigDict(extra="ignore")


class MetricsQuery(BaseModel):
    """
    Query of GET /api/admin/metrics.

    `range` accepts seconds ("900") or a unit suffix ("15m", "1h", "1d").
    Absent means the recorder's default window.
    """

    range: float | None = Field(default=None, description="Dashboard window in seconds")

    model_config = ConfigDict(extra="ignore")

    @field_validator("range", mode="before")
    @classmethod
    def parse_range(cls, v):
        if v is None or v == "":
            return None
        # 0 default never applies: None/"" were handled above
        return parse_time_range(v, default=0.0)
