"""
Payout provider adapters.

Every provider speaks the same contract: POST {base_url}/payouts with

    {"amount", "currency", "methodDescriptor", "scheduleType", "reference"}

and answer {"success", "status", "transactionRef", "error"}. "amount" is in
minor units. A payout only counts as sent when the provider explicitly says
so; timeouts and unreadable answers are failures.

Each HttpPayoutProvider guards its calls with a cache-backed CircuitBreaker,
so a provider that keeps timing out is skipped by every worker until it
recovers.

Configuration (via settings):
- PAYOUT_PROVIDERS: ordered list of provider configs (see DEFAULT_PROVIDERS)
- PAYOUT_PROVIDER_TIMEOUT_SECONDS: default request timeout (default: 30)

Usage:
    from escrow.payouts.providers import PayoutRequest, get_provider_registry

    registry = get_provider_registry()
    for provider in registry.route("bank_transfer", "immediate"):
        response = provider.execute(request)
        if response.success or not response.retryable:
            break
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import requests
from django.conf import settings

from core.circuit_breaker import CircuitBreaker, CircuitOpenError

from escrow.exceptions import (
    ProviderFailureError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from escrow.models.payout import PayoutMethodType
from escrow.state_machines import PayoutSchedule

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from escrow.payouts.methods import PayoutMethodDescriptor

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30

# Routing order matters: the first provider supporting a method is tried first.
DEFAULT_PROVIDERS = [
    {
        "name": "tsara",
        "base_url": "https://api.tsara.example/v1",
        "method_types": [PayoutMethodType.ESCROW_PROVIDER, PayoutMethodType.BANK_TRANSFER],
        "escrow_capable": True,
    },
    {
        "name": "paystack",
        "base_url": "https://api.paystack.example/v1",
        "method_types": [PayoutMethodType.BANK_TRANSFER],
    },
    {
        "name": "wise",
        "base_url": "https://api.wise.example/v1",
        "method_types": [PayoutMethodType.WISE, PayoutMethodType.BANK_TRANSFER],
    },
    {
        "name": "flutterwave",
        "base_url": "https://api.flutterwave.example/v3",
        "method_types": [PayoutMethodType.BANK_TRANSFER],
    },
    {
        "name": "paypal",
        "base_url": "https://api.paypal.example/v1",
        "method_types": [PayoutMethodType.PAYPAL],
    },
    {
        "name": "crypto",
        "base_url": "https://api.crypto-payouts.example/v1",
        "method_types": [PayoutMethodType.CRYPTO],
        "timeout_seconds": 60,
    },
]


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class PayoutRequest:
    """
    One payout attempt as sent to a provider.

    Attributes:
        amount_cents: Amount in minor units (> 0)
        currency: ISO 4217 code
        method: Validated payout method descriptor
        schedule_type: Schedule of the instruction being executed
        reference: Provider-facing reference, also sent as Idempotency-Key
    """

    amount_cents: int
    currency: str
    method: PayoutMethodDescriptor
    schedule_type: str
    reference: str

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.reference:
            raise ValueError("reference is required")

    def to_payload(self) -> dict[str, Any]:
        return {
            "amount": self.amount_cents,
            "currency": self.currency,
            "methodDescriptor": self.method.to_payload(),
            "scheduleType": self.schedule_type,
            "reference": self.reference,
        }


@dataclass(frozen=True)
class PayoutResponse:
    """
    Normalized provider answer.

    status is "completed" or "processing" on success, "failed" otherwise.
    retryable tells the orchestrator whether the next provider may be tried.
    """

    success: bool
    status: str
    provider: str = ""
    transaction_ref: str = ""
    error: str = ""
    retryable: bool = False

    @classmethod
    def failed(cls, provider: str, error: str, retryable: bool) -> PayoutResponse:
        return cls(
            success=False,
            status="failed",
            provider=provider,
            error=error,
            retryable=retryable,
        )


# =============================================================================
# Providers
# =============================================================================


class PayoutProvider:
    """
    Base class for payout providers.

    Subclasses implement execute(). execute() must not raise for provider
    failures; it returns a failed PayoutResponse instead.
    """

    name: str = ""
    method_types: frozenset[str] = frozenset()
    escrow_capable: bool = False

    def supports(self, method_type: str) -> bool:
        return method_type in self.method_types

    def execute(self, request: PayoutRequest) -> PayoutResponse:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class HttpPayoutProvider(PayoutProvider):
    """
    Provider reached over HTTP with the common payout contract.

    Error mapping:
        - Timeout -> ProviderTimeoutError (retryable)
        - Connection error / 5xx / 429 -> ProviderUnavailableError (retryable)
        - Other 4xx -> ProviderRejectedError (permanent)
        - Open circuit -> retryable failure, nothing sent
    """

    COMPLETED_STATUSES = ("completed", "processing")

    def __init__(
        self,
        name: str,
        base_url: str,
        method_types: Iterable[str],
        escrow_capable: bool = False,
        api_key: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        session: requests.Session | None = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.method_types = frozenset(method_types)
        self.escrow_capable = escrow_capable
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        # Rejections are the provider working correctly; only outages trip it
        self.breaker = CircuitBreaker(
            f"payout:{name}",
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            is_failure=lambda exc: getattr(exc, "is_retryable", True),
        )

    def execute(self, request: PayoutRequest) -> PayoutResponse:
        start = time.monotonic()
        try:
            with self.breaker.call():
                data = self._post(request)
        except CircuitOpenError as e:
            logger.warning(
                f"Payout provider {self.name} circuit open, skipping",
                extra={"provider": self.name, "reference": request.reference},
            )
            return PayoutResponse.failed(self.name, e.message, retryable=True)
        except ProviderFailureError as e:
            logger.warning(
                f"Payout provider {self.name} failed: {e.message}",
                extra={
                    "provider": self.name,
                    "reference": request.reference,
                    "error_code": e.error_code,
                    "is_retryable": e.is_retryable,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
            return PayoutResponse.failed(self.name, e.message, retryable=e.is_retryable)

        response = self._parse(data)
        logger.info(
            f"Payout provider {self.name} answered {response.status}",
            extra={
                "provider": self.name,
                "reference": request.reference,
                "transaction_ref": response.transaction_ref,
                "duration_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return response

    def _post(self, request: PayoutRequest) -> dict[str, Any]:
        headers = {"Idempotency-Key": request.reference}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            http_response = self.session.post(
                f"{self.base_url}/payouts",
                json=request.to_payload(),
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout:
            raise ProviderTimeoutError(
                f"{self.name} did not answer within {self.timeout_seconds}s",
                provider=self.name,
            ) from None
        except requests.RequestException as e:
            raise ProviderUnavailableError(
                f"{self.name} unreachable: {e}",
                provider=self.name,
            ) from e

        status_code = http_response.status_code
        if status_code >= 500 or status_code == 429:
            raise ProviderUnavailableError(
                f"{self.name} returned HTTP {status_code}",
                provider=self.name,
                details={"status_code": status_code},
            )

        try:
            data = http_response.json()
        except ValueError:
            data = None

        if status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            raise ProviderRejectedError(
                error or f"{self.name} rejected the payout (HTTP {status_code})",
                provider=self.name,
                details={"status_code": status_code},
            )
        if not isinstance(data, dict):
            raise ProviderRejectedError(
                f"{self.name} returned an unreadable response",
                provider=self.name,
                details={"status_code": status_code},
            )
        return data

    def _parse(self, data: dict[str, Any]) -> PayoutResponse:
        status = str(data.get("status") or "").lower()
        if data.get("success") is True and status in self.COMPLETED_STATUSES:
            return PayoutResponse(
                success=True,
                status=status,
                provider=self.name,
                transaction_ref=str(data.get("transactionRef") or ""),
            )
        return PayoutResponse.failed(
            self.name,
            str(data.get("error") or f"Payout not confirmed (status: {status or 'missing'})"),
            retryable=False,
        )


# =============================================================================
# Registry
# =============================================================================


class ProviderRegistry:
    """Ordered set of payout providers with method routing."""

    def __init__(self, providers: Iterable[PayoutProvider]):
        self._providers = list(providers)

    @classmethod
    def from_settings(cls, configs: list[dict[str, Any]] | None = None) -> ProviderRegistry:
        if configs is None:
            configs = getattr(settings, "PAYOUT_PROVIDERS", None) or DEFAULT_PROVIDERS
        default_timeout = getattr(
            settings, "PAYOUT_PROVIDER_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
        )
        return cls(
            HttpPayoutProvider(
                name=config["name"],
                base_url=config["base_url"],
                method_types=config["method_types"],
                escrow_capable=config.get("escrow_capable", False),
                api_key=config.get("api_key", ""),
                timeout_seconds=config.get("timeout_seconds", default_timeout),
            )
            for config in configs
        )

    def route(self, method_type: str, schedule: str) -> list[PayoutProvider]:
        """
        Providers to try for a payout, in order.

        Escrow-capable providers never handle immediate payouts.
        """
        return [
            provider
            for provider in self._providers
            if provider.supports(method_type)
            and not (provider.escrow_capable and schedule == PayoutSchedule.IMMEDIATE)
        ]

    def get(self, name: str) -> PayoutProvider | None:
        return next((p for p in self._providers if p.name == name), None)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self._providers]

    def __iter__(self) -> Iterator[PayoutProvider]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)


_registry: ProviderRegistry | None = None


def get_provider_registry() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = ProviderRegistry.from_settings()
    return _registry


def set_provider_registry(registry: ProviderRegistry | None) -> None:
    """Replace the process-wide registry (None rebuilds it from settings)."""
    global _registry
    _registry = registry
