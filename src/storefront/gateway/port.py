"""Payment gateway port (abstract interface).

Defines the contract every payment gateway adapter implements. The payment
handlers and the settlement reconciler only ever talk to this interface, so
card, hosted-redirect, cash-on-delivery and fake gateways are interchangeable
behind the payment method discriminator.

Adapters raise ``GatewayError`` when the provider cannot be reached or refuses
a mutation, and ``MalformedCallback`` when a callback body cannot be parsed.
Signature checks never raise; they answer yes or no.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class ReturnUrls:
    """Where the customer (and the gateway) are sent after an off-site payment."""

    success: str
    failure: str
    cancel: str
    notify: str


@dataclass(frozen=True)
class InitResult:
    """Result of opening a payment session at the gateway."""

    reference: str
    redirect_url: str | None = None
    client_secret: str | None = None
    raw: dict | None = None


@dataclass(frozen=True)
class VerifyResult:
    """What the gateway reports about a payment when asked directly."""

    reference: str
    succeeded: bool
    amount: float | None = None
    currency: str | None = None
    transaction_id: str | None = None
    status: str | None = None
    raw: dict | None = None


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class CallbackOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    IGNORED = "ignored"


@dataclass(frozen=True)
class CallbackEvent:
    """A gateway callback, normalized to the vocabulary the reconciler understands.

    ``reference`` is the id the gateway knows the attempt by (a payment intent
    id, a transaction id). ``order_number`` is set when the callback also
    carries the merchant-side order number.
    """

    outcome: CallbackOutcome
    reference: str | None = None
    order_number: str | None = None
    transaction_id: str | None = None
    amount: float | None = None
    currency: str | None = None
    refunded_amount: float | None = None
    failure_reason: str | None = None
    event_type: str | None = None
    event_id: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def is_actionable(self) -> bool:
        return self.outcome != CallbackOutcome.IGNORED


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = "gateway"
    signature_header: str | None = None

    @abstractmethod
    def initialize(self, payment, order, urls: ReturnUrls) -> InitResult:
        """Open a payment session for ``payment``. Raises ``GatewayError`` on failure."""
        ...

    @abstractmethod
    def verify(self, reference: str) -> VerifyResult:
        """Ask the gateway for the current state of a payment."""
        ...

    @abstractmethod
    def refund(self, payment, amount: float, reason: str | None = None) -> RefundResult:
        """Refund part or all of a settled payment."""
        ...

    @abstractmethod
    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check that a callback body was produced by the gateway."""
        ...

    @abstractmethod
    def parse_callback(self, payload: bytes) -> CallbackEvent:
        """Translate a verified callback body into a ``CallbackEvent``."""
        ...
