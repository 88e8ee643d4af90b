from enum import StrEnum
from typing import Any

from pydantic import ConfigDict, Field

from app.schemas import BaseSchema


class ReceiptFailureKind(StrEnum):
    """Why an Original Transaction Identifier could not be derived from a receipt."""

    MALFORMED_RECEIPT = "MALFORMED_RECEIPT"
    MISSING_SHARED_SECRET = "MISSING_SHARED_SECRET"
    NON_JSON = "NON_JSON"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    VENDOR_STATUS = "VENDOR_STATUS"
    NO_IDENTIFIER = "NO_IDENTIFIER"


class EntitlementReason(StrEnum):
    NO_TRANSACTIONS = "NO_TRANSACTIONS"
    TARGET_PRODUCT_NOT_FOUND = "TARGET_PRODUCT_NOT_FOUND"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class TransactionRecord(BaseSchema):
    """One purchase or renewal event, timestamps in epoch milliseconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    product_id: str | None = None
    expires_date: int | None = None
    revocation_date: int | None = None
    cancellation_date: int | None = None
    purchase_date: int | None = None
    original_transaction_id: str | None = None


class RenewalRecord(BaseSchema):
    """Billing-retry and renewal state paired with a transaction."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    grace_period_expires_date: int | None = None
    auto_renew_product_id: str | None = None
    product_id: str | None = None


class TransactionPair(BaseSchema):
    """A transaction and the renewal record that arrived with it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    transaction: TransactionRecord
    renewal: RenewalRecord | None = None


class DecodedStatus(BaseSchema):
    """Decoded subscription statuses plus what was seen while decoding."""

    pairs: list[TransactionPair] = Field(default_factory=list)
    seen_products: list[str] = Field(default_factory=list)
    skipped: int = 0


class CandidateRecord(BaseSchema):
    """
    Normalized record the entitlement decision runs on.

    Both the legacy receipt entries and the decoded App Store Server API
    records are mapped into this shape first.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    product_id: str | None = None
    expires_at: int = 0
    cancelled: bool = False
    grace_until: int = 0


class EntitlementDecision(BaseSchema):
    active: bool
    product_id: str | None = None
    expires_at: int | None = None
    reason: EntitlementReason | None = None
    seen_products: list[str] = Field(default_factory=list)


class ReceiptResolution(BaseSchema):
    """
    Outcome of resolving a receipt through verifyReceipt.

    Either ``success`` with an ``original_transaction_id`` and the vendor
    payload, or a failure tagged with ``failure`` and diagnostic fields.
    """

    success: bool
    original_transaction_id: str | None = None
    payload: dict[str, Any] | None = None
    failure: ReceiptFailureKind | None = None
    status: int | None = None
    environment: str | None = None
    has_latest: bool | None = None
    has_receipt: bool | None = None
    raw: str | None = None
    error: str | None = None

    @classmethod
    def resolved(
        cls,
        original_transaction_id: str,
        payload: dict[str, Any],
        environment: str,
    ) -> "ReceiptResolution":
        return cls(
            success=True,
            original_transaction_id=original_transaction_id,
            payload=payload,
            status=0,
            environment=environment,
        )

    @classmethod
    def failed(cls, failure: ReceiptFailureKind, **diagnostics: Any) -> "ReceiptResolution":
        return cls(success=False, failure=failure, **diagnostics)

    def diagnostics(self) -> dict[str, Any]:
        """
        Diagnostic fields for the response debug block, camelCased and
        without empty values. The vendor payload is never included.
        """
        debug = {
            "failure": self.failure.value if self.failure else None,
            "status": self.status,
            "envTried": self.environment,
            "hasLatest": self.has_latest,
            "hasReceipt": self.has_receipt,
            "raw": self.raw,
            "error": self.error,
        }
        return {key: value for key, value in debug.items() if value is not None}
