from typing import Any

from pydantic import ConfigDict

from app.schemas.base import BaseSchema, CamelCaseSchema


class VerifyReceiptRequest(BaseSchema):
    """
    Body of POST /verify_apple_receipt.

    ``receipt_b64`` is left untyped so that a missing or non-string receipt
    reaches the resolver's own validation instead of a 422.
    """

    model_config = ConfigDict(extra="ignore")

    receipt_b64: Any = None
    product_id: str | None = None


class VerifyOriginalTransactionRequest(BaseSchema):
    """Body of POST /verify_by_oid."""

    model_config = ConfigDict(extra="ignore")

    original_transaction_id: str | None = None
    product_id: str | None = None


class EntitlementResponse(CamelCaseSchema):
    """Entitlement decision as returned to the client app."""

    active: bool
    product_id: str | None = None
    expires_at: int | None = None
    reason: str | None = None
    error: str | None = None
    debug: dict[str, Any] | None = None


class VerificationOutcome(BaseSchema):
    """HTTP status code and body produced for one verification request."""

    status_code: int
    body: EntitlementResponse

    def content(self) -> dict[str, Any]:
        return self.body.model_dump(by_alias=True, exclude_unset=True)
