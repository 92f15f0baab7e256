"""Prometheus metrics for the authorization core."""

from fastapi import APIRouter, Response
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter(tags=["monitoring"])

PERMISSION_CACHE_LOOKUPS = Counter(
    "realty_access_permission_cache_lookups_total",
    "Permission cache lookups by result",
    ["result"],  # hit, miss, error
)

AUTHORIZATION_DECISIONS = Counter(
    "realty_access_authorization_decisions_total",
    "Authorization gate decisions",
    ["outcome", "reason"],
)

SESSIONS_REVOKED = Counter(
    "realty_access_sessions_revoked_total",
    "Sessions marked revoked",
    ["trigger"],  # user, tenant, logout
)


@router.get("/metrics", response_class=Response)
async def get_metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
