"""HTTP clients for upstream services."""

from billing_ledger.clients.stripe_api import (
    AuthenticationError,
    RateLimitError,
    StripeAPIClient,
    StripeAPIError,
)

__all__ = [
    "AuthenticationError",
    "RateLimitError",
    "StripeAPIClient",
    "StripeAPIError",
]
