"""Stripe REST client with bearer authentication and cursor pagination."""

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any, cast

import httpx
import structlog

from billing_ledger.config import get_settings

logger = structlog.get_logger(__name__)

PAGE_SIZE = 100


class StripeAPIError(Exception):
    """Base exception for Stripe API errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class AuthenticationError(StripeAPIError):
    """API key rejected."""

    pass


class RateLimitError(StripeAPIError):
    """Rate limit exceeded."""

    pass


def encode_params(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested parameters into Stripe's bracket notation.

    ``{"created": {"gte": 1}, "expand": ["data.customer"]}`` becomes
    ``[("created[gte]", "1"), ("expand[]", "data.customer")]``.
    """
    encoded: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            encoded.extend(encode_params(value, name))
        elif isinstance(value, (list, tuple)):
            encoded.extend((f"{name}[]", str(item)) for item in value)
        elif isinstance(value, bool):
            encoded.append((name, "true" if value else "false"))
        elif isinstance(value, datetime):
            encoded.append((name, str(int(value.timestamp()))))
        else:
            encoded.append((name, str(value)))
    return encoded


def created_window(start: datetime, end: datetime) -> dict[str, int]:
    """``created`` filter for the half-open interval ``[start, end)``."""
    return {"gte": int(start.timestamp()), "lt": int(end.timestamp())}


class StripeAPIClient:
    """Async client for the Stripe REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        api_version: str | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.stripe_api_url).rstrip("/")
        self._api_key = api_key or settings.stripe_api_key.get_secret_value()
        self._api_version = api_version or settings.stripe_api_version
        self._timeout = settings.stripe_timeout
        self._max_retries = settings.stripe_max_retries

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "StripeAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Stripe-Version": self._api_version,
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> dict[str, Any]:
        """Make an API request with retry logic."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=encode_params(params) if params else None,
                data=dict(encode_params(data)) if data else None,
                headers=self._get_headers(),
            )

            if response.status_code == 401:
                raise AuthenticationError("Invalid API key", status_code=401)

            if response.status_code == 429:
                retry_after = int(response.headers.get("Retry-After", "60"))
                raise RateLimitError(
                    f"Rate limited, retry after {retry_after}s",
                    status_code=429,
                    details={"retry_after": retry_after},
                )

            if response.status_code >= 400:
                try:
                    error_detail = response.json() if response.content else {}
                except ValueError:
                    error_detail = {
                        "raw": response.text[:500] if response.text else "empty response"
                    }
                raise StripeAPIError(
                    f"API error: {response.status_code}",
                    status_code=response.status_code,
                    details=error_detail,
                )

            body = response.json() if response.content else {}
            if not isinstance(body, dict):
                raise StripeAPIError("Invalid response format")
            return cast(dict[str, Any], body)

        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                await asyncio.sleep(2**retry_count)  # Exponential backoff
                return await self._request(method, path, params, data, retry_count + 1)
            raise StripeAPIError(f"Request failed: {e}") from e

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make GET request."""
        return await self._request("GET", path, params=params)

    async def post(self, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make POST request with a form encoded body."""
        return await self._request("POST", path, data=data)

    async def list_all(
        self, path: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Iterate over every object of a list endpoint, following ``has_more``."""
        query = dict(params or {})
        query.setdefault("limit", PAGE_SIZE)
        page_count = 0

        while True:
            page = await self.get(path, params=query)
            items = page.get("data") or []
            page_count += 1
            for item in items:
                yield item
            if not page.get("has_more") or not items:
                break
            query["starting_after"] = items[-1]["id"]

        logger.debug("list_fetched", path=path, pages=page_count)

    async def _collect(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        return [item async for item in self.list_all(path, params)]

    # === Billing ===

    async def list_invoices(
        self, start: datetime, end: datetime, status: str | None = None
    ) -> list[dict[str, Any]]:
        """Invoices created in ``[start, end)`` with customer and tax ids expanded."""
        return await self._collect(
            "/v1/invoices",
            {
                "created": created_window(start, end),
                "status": status,
                "expand": ["data.customer", "data.customer.tax_ids"],
            },
        )

    async def retrieve_invoice(self, invoice_id: str) -> dict[str, Any]:
        return await self.get(
            f"/v1/invoices/{invoice_id}",
            params={"expand": ["customer", "customer.tax_ids"]},
        )

    async def list_invoice_lines(self, invoice_id: str) -> list[dict[str, Any]]:
        return await self._collect(f"/v1/invoices/{invoice_id}/lines")

    async def list_credit_notes(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return await self._collect(
            "/v1/credit_notes",
            {"created": created_window(start, end), "expand": ["data.invoice"]},
        )

    async def list_invoice_credit_notes(self, invoice_id: str) -> list[dict[str, Any]]:
        return await self._collect("/v1/credit_notes", {"invoice": invoice_id})

    async def retrieve_tax_rate(self, tax_rate_id: str) -> dict[str, Any]:
        return await self.get(f"/v1/tax_rates/{tax_rate_id}")

    # === Payments ===

    async def list_charges(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """Charges created in ``[start, end)`` with customer, invoice and balance transaction."""
        return await self._collect(
            "/v1/charges",
            {
                "created": created_window(start, end),
                "expand": [
                    "data.customer",
                    "data.customer.tax_ids",
                    "data.invoice",
                    "data.balance_transaction",
                ],
            },
        )

    async def find_checkout_session(self, payment_intent_id: str) -> dict[str, Any] | None:
        """The checkout session that created a payment intent, if any."""
        page = await self.get(
            "/v1/checkout/sessions",
            params={"payment_intent": payment_intent_id, "expand": ["data.line_items"]},
        )
        sessions = page.get("data") or []
        return sessions[0] if sessions else None

    async def list_payouts(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return await self._collect(
            "/v1/payouts",
            {"created": created_window(start, end), "expand": ["data.balance_transaction"]},
        )

    async def list_transfers(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return await self._collect(
            "/v1/transfers",
            {
                "created": created_window(start, end),
                "expand": [
                    "data.destination",
                    "data.source_transaction",
                    "data.source_transaction.invoice",
                ],
            },
        )

    async def list_balance_transactions(
        self, start: datetime, end: datetime, transaction_type: str | None = None
    ) -> list[dict[str, Any]]:
        return await self._collect(
            "/v1/balance_transactions",
            {"created": created_window(start, end), "type": transaction_type},
        )

    # === Customers ===

    async def list_customers(self) -> list[dict[str, Any]]:
        return await self._collect("/v1/customers", {"expand": ["data.tax_ids"]})

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        return await self.get(
            f"/v1/customers/{customer_id}", params={"expand": ["tax_ids"]}
        )

    async def update_customer_metadata(
        self, customer_id: str, metadata: dict[str, str]
    ) -> dict[str, Any]:
        logger.info("customer_metadata_updated", customer_id=customer_id, keys=list(metadata))
        return await self.post(f"/v1/customers/{customer_id}", data={"metadata": metadata})
