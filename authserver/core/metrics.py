"""Prometheus metrics inventory.

Every metric the service exposes is defined here; the modules that own
the behavior import and increment them at the point of action.  Counters
only go up, so tests assert on deltas.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# OAuth metrics
# ---------------------------------------------------------------------------

AUTHORIZATION_CODES_ISSUED = Counter(
    "oauth_authorization_codes_issued_total",
    "Authorization codes issued by /oauth/authorize",
)

TOKENS_ISSUED = Counter(
    "oauth_tokens_issued_total",
    "Token pairs issued by /oauth/token",
    ["grant_type"],  # "authorization_code" or "refresh_token"
)

TOKEN_ERRORS = Counter(
    "oauth_token_errors_total",
    "OAuth error responses by grant type and error code",
    ["grant_type", "error"],  # grant_type is "authorize" for the authorize endpoint
)

CHALLENGES_EVICTED = Counter(
    "oauth_challenges_evicted_total",
    "Expired PKCE challenge records removed by the TTL sweep",
)

REFRESH_TOKEN_CLAIMS = Counter(
    "refresh_token_claims_total",
    "Refresh token redemption attempts by result",
    ["result"],  # "claimed" or "superseded"
)
