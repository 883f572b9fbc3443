from fastapi import APIRouter, Depends, Request

from subtrack.core.rate_limit import build_rate_limit_key, general_limiter, get_policies
from subtrack.schemas.rate_limit import PolicyUsage, RateLimitRejection, RateLimitStatusResponse

router = APIRouter(tags=["Rate limits"], dependencies=[Depends(general_limiter)])


@router.get(
    "/rate-limits",
    response_model=RateLimitStatusResponse,
    responses={429: {"model": RateLimitRejection}},
)
async def get_rate_limit_status(request: Request) -> RateLimitStatusResponse:
    """Report the caller's usage against every route-class policy.

    Reads counters without counting against the auth, subscription or user
    policies. The general policy guarding this route counts the call itself.

    Returns:
        RateLimitStatusResponse: One entry per policy.
    """
    key = build_rate_limit_key(request)
    usage = []
    for policy in get_policies():
        record = await policy.peek(key)
        used = record.total_hits if record else 0
        usage.append(
            PolicyUsage(
                policy=policy.config.name,
                limit=policy.config.max_requests,
                used=used,
                remaining=max(0, policy.config.max_requests - used),
                window_seconds=policy.config.window_seconds,
                reset_at=record.reset_time if record else None,
            )
        )
    return RateLimitStatusResponse(data=usage)
