"""
Payout methods and providers.

Public API:
    parse_payout_method - Build a typed, validated payout method descriptor
    PayoutRequest / PayoutResponse - Provider call contract
    PayoutProvider / HttpPayoutProvider - Provider adapters
    ProviderRegistry - Ordered providers with method routing
    get_provider_registry / set_provider_registry - Process-wide registry
"""

from escrow.payouts.methods import (
    BankTransferMethod,
    CryptoWalletMethod,
    EscrowProviderMethod,
    PayoutMethodDescriptor,
    PayPalMethod,
    WiseMethod,
    parse_payout_method,
)
from escrow.payouts.providers import (
    HttpPayoutProvider,
    PayoutProvider,
    PayoutRequest,
    PayoutResponse,
    ProviderRegistry,
    get_provider_registry,
    set_provider_registry,
)

__all__ = [
    "BankTransferMethod",
    "CryptoWalletMethod",
    "EscrowProviderMethod",
    "HttpPayoutProvider",
    "PayPalMethod",
    "PayoutMethodDescriptor",
    "PayoutProvider",
    "PayoutRequest",
    "PayoutResponse",
    "ProviderRegistry",
    "WiseMethod",
    "get_provider_registry",
    "set_provider_registry",
    "parse_payout_method",
]
