from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitRejection(BaseModel):
    """Body returned with HTTP 429."""

    success: bool = False
    error: str = Field(..., description="Policy-specific message")
    retryAfter: str = Field(..., description="Window length in words, e.g. '15 minutes'")


class PolicyUsage(BaseModel):
    """Caller's standing against one route-class policy."""

    policy: str
    limit: int = Field(..., ge=1)
    used: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    window_seconds: int = Field(..., ge=1)
    reset_at: float | None = Field(
        None,
        description="UNIX epoch seconds when the window resets; null when no window is open",
    )


class RateLimitStatusResponse(BaseModel):
    success: bool = True
    data: list[PolicyUsage]
