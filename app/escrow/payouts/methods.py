"""
Payout method descriptors.

A PayoutMethod row stores its destination as (method_type, details JSON).
parse_payout_method turns that pair into one of a closed set of frozen
dataclasses, validating the variant's required fields, so the orchestrator
and providers only ever see well-formed, typed destinations.

Variants:
    BankTransferMethod: account_number, account_name
    PayPalMethod: email
    CryptoWalletMethod: wallet_address
    WiseMethod: account_number (international wire)
    EscrowProviderMethod: account_id (recurring schedules only)

Usage:
    from escrow.payouts.methods import parse_payout_method

    method = parse_payout_method("paypal", {"email": "seller@example.com"})
    method.to_payload()  # {"type": "paypal", "email": "seller@example.com"}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Union

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email

from escrow.exceptions import PayoutMethodValidationError
from escrow.models.payout import PayoutMethodType
from escrow.state_machines import PayoutSchedule

WALLET_ADDRESS_MIN_LENGTH = 26
WALLET_ADDRESS_MAX_LENGTH = 128


@dataclass(frozen=True)
class _Method:
    kind: ClassVar[str]
    required_fields: ClassVar[tuple[str, ...]] = ()
    recurring_only: ClassVar[bool] = False

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.kind, **asdict(self)}

    def supports_schedule(self, schedule: str) -> bool:
        return not (self.recurring_only and schedule == PayoutSchedule.IMMEDIATE)

    @classmethod
    def extra_errors(cls, values: dict[str, str]) -> dict[str, list[str]]:
        return {}


@dataclass(frozen=True)
class BankTransferMethod(_Method):
    kind: ClassVar[str] = PayoutMethodType.BANK_TRANSFER
    required_fields: ClassVar[tuple[str, ...]] = ("account_number", "account_name")

    account_number: str
    account_name: str
    bank_code: str = ""
    bank_name: str = ""


@dataclass(frozen=True)
class PayPalMethod(_Method):
    kind: ClassVar[str] = PayoutMethodType.PAYPAL
    required_fields: ClassVar[tuple[str, ...]] = ("email",)

    email: str

    @classmethod
    def extra_errors(cls, values):
        try:
            validate_email(values["email"])
        except DjangoValidationError:
            return {"email": ["Enter a valid email address."]}
        return {}


@dataclass(frozen=True)
class CryptoWalletMethod(_Method):
    kind: ClassVar[str] = PayoutMethodType.CRYPTO
    required_fields: ClassVar[tuple[str, ...]] = ("wallet_address",)

    wallet_address: str
    network: str = ""

    @classmethod
    def extra_errors(cls, values):
        length = len(values["wallet_address"])
        if not WALLET_ADDRESS_MIN_LENGTH <= length <= WALLET_ADDRESS_MAX_LENGTH:
            return {
                "wallet_address": [
                    f"Wallet address must be {WALLET_ADDRESS_MIN_LENGTH}-"
                    f"{WALLET_ADDRESS_MAX_LENGTH} characters."
                ]
            }
        return {}


@dataclass(frozen=True)
class WiseMethod(_Method):
    kind: ClassVar[str] = PayoutMethodType.WISE
    required_fields: ClassVar[tuple[str, ...]] = ("account_number",)

    account_number: str
    account_name: str = ""
    routing_number: str = ""
    swift_code: str = ""
    country: str = ""


@dataclass(frozen=True)
class EscrowProviderMethod(_Method):
    kind: ClassVar[str] = PayoutMethodType.ESCROW_PROVIDER
    required_fields: ClassVar[tuple[str, ...]] = ("account_id",)
    recurring_only: ClassVar[bool] = True

    account_id: str


PayoutMethodDescriptor = Union[
    BankTransferMethod,
    PayPalMethod,
    CryptoWalletMethod,
    WiseMethod,
    EscrowProviderMethod,
]

METHOD_CLASSES: dict[str, type[_Method]] = {
    cls.kind: cls
    for cls in (
        BankTransferMethod,
        PayPalMethod,
        CryptoWalletMethod,
        WiseMethod,
        EscrowProviderMethod,
    )
}


def parse_payout_method(kind: str, details: dict[str, Any] | None) -> PayoutMethodDescriptor:
    """
    Build and validate the descriptor for a payout method.

    String values are stripped; unknown keys in details are ignored.

    Raises:
        PayoutMethodValidationError: Unknown kind, or per-field errors
    """
    method_class = METHOD_CLASSES.get(kind)
    if method_class is None:
        raise PayoutMethodValidationError(
            f"Unknown payout method type: {kind}",
            method_type=str(kind),
            field_errors={"method_type": [f"Must be one of: {', '.join(METHOD_CLASSES)}"]},
        )

    details = details or {}
    values = {}
    for field in fields(method_class):
        raw = details.get(field.name)
        if raw is None:
            raw = ""
        values[field.name] = raw.strip() if isinstance(raw, str) else str(raw)

    errors = {
        name: ["This field is required."]
        for name in method_class.required_fields
        if not values.get(name)
    }
    if not errors:
        errors = method_class.extra_errors(values)

    if errors:
        raise PayoutMethodValidationError(
            f"Invalid {kind} payout method",
            method_type=kind,
            field_errors=errors,
        )
    return method_class(**values)
