from dataclasses import dataclass
from typing import Any

from anyio import to_thread
from loguru import logger
from starlette import status

from app.core.config import Settings, VerificationMode
from app.core.constants import ResponseReason, UpstreamFailure
from app.core.exceptions.app_store import (
    AppStoreException,
    AppStoreInvalidCredentialsException,
    AppStoreTimeoutException,
    AppStoreVerifierException,
)
from app.core.utils import mask_identifier
from app.schemas import (
    EntitlementDecision,
    EntitlementResponse,
    ReceiptResolution,
    VerificationOutcome,
)
from app.services.payments.app_store import AppStoreService
from app.services.payments.entitlement import (
    candidates_from_legacy_payload,
    candidates_from_pairs,
    decide,
)
from app.services.payments.legacy_receipt import LegacyReceiptResolver
from app.services.payments.status_decoder import decode_status_response


def _outcome(status_code: int, **fields: Any) -> VerificationOutcome:
    return VerificationOutcome(status_code=status_code, body=EntitlementResponse(**fields))


@dataclass
class VerificationService:
    """
    Turns a receipt (or a known original transaction id) into one entitlement decision.

    Per request: resolve the receipt through verifyReceipt, look up the
    authoritative subscription statuses, decode them and decide. Every
    failure ends in a VerificationOutcome, nothing is raised to the caller.
    In receipt-only mode the status lookup is skipped and the verifyReceipt
    payload is decided on directly.
    """

    settings: Settings
    resolver: LegacyReceiptResolver
    app_store: AppStoreService

    async def verify_receipt(
        self,
        receipt_b64: Any,
        product_id: str | None = None,
    ) -> VerificationOutcome:
        """
        Verify an app receipt.

        Args:
            receipt_b64: Base64 app receipt as sent by the client
            product_id: Only decide on this product when set

        Returns:
            VerificationOutcome: HTTP status code and entitlement body
        """
        try:
            if not receipt_b64:
                return _outcome(
                    status.HTTP_400_BAD_REQUEST,
                    active=False,
                    reason=ResponseReason.MISSING_RECEIPT,
                )

            resolution = await self.resolver.resolve(receipt_b64)
            if not resolution.success:
                return self._no_identifier(resolution, receipt_b64)

            if self.settings.verification_mode == VerificationMode.RECEIPT_ONLY:
                decision = decide(
                    candidates_from_legacy_payload(resolution.payload or {}),
                    target_product_id=product_id,
                )
                return self._decided(
                    decision,
                    product_id,
                    debug={"source": VerificationMode.RECEIPT_ONLY.value},
                )

            return await self._verify_with_server_api(
                resolution.original_transaction_id, product_id
            )
        except Exception as err:
            logger.exception("Unexpected error verifying receipt")
            return self._server_error(err)

    async def verify_original_transaction_id(
        self,
        original_transaction_id: str | None,
        product_id: str | None = None,
    ) -> VerificationOutcome:
        """
        Verify a subscription by an already known original transaction id.

        Args:
            original_transaction_id: Identifier from an earlier receipt verification
            product_id: Only decide on this product when set

        Returns:
            VerificationOutcome: HTTP status code and entitlement body
        """
        try:
            if not original_transaction_id or not original_transaction_id.strip():
                return _outcome(
                    status.HTTP_400_BAD_REQUEST,
                    active=False,
                    reason=ResponseReason.MISSING_ORIGINAL_TRANSACTION_ID,
                )

            return await self._verify_with_server_api(original_transaction_id.strip(), product_id)
        except Exception as err:
            logger.exception("Unexpected error verifying original transaction id")
            return self._server_error(err)

    async def _verify_with_server_api(
        self,
        original_transaction_id: str,
        product_id: str | None,
    ) -> VerificationOutcome:
        try:
            statuses = await self.app_store.get_subscription_statuses(
                original_transaction_id,
                timeout=self.settings.status_lookup_timeout,
            )
            # Signature verification may fetch revocation data, keep it off the event loop
            decoded = await to_thread.run_sync(decode_status_response, statuses, self.app_store)
        except AppStoreException as err:
            return self._upstream_failure(err)

        decision = decide(
            candidates_from_pairs(decoded.pairs),
            target_product_id=product_id,
            seen_products=decoded.seen_products,
        )
        debug: dict[str, Any] = {"source": VerificationMode.SERVER_API.value}
        if decoded.skipped:
            debug["skippedRecords"] = decoded.skipped

        return self._decided(decision, product_id, debug=debug)

    def _decided(
        self,
        decision: EntitlementDecision,
        product_id: str | None,
        debug: dict[str, Any],
    ) -> VerificationOutcome:
        logger.info(
            f"Entitlement decided: active={decision.active}, "
            f"product={decision.product_id}, reason={decision.reason}"
        )
        fields: dict[str, Any] = {
            "active": decision.active,
            "product_id": decision.product_id or product_id or None,
            "expires_at": decision.expires_at or None,
            "debug": {"seenProducts": decision.seen_products, **debug},
        }
        if decision.reason is not None:
            fields["reason"] = decision.reason.value

        return _outcome(status.HTTP_200_OK, **fields)

    def _no_identifier(self, resolution: ReceiptResolution, receipt_b64: Any) -> VerificationOutcome:
        debug = resolution.diagnostics()
        debug["receiptLen"] = len(receipt_b64) if isinstance(receipt_b64, str) else 0

        return _outcome(
            status.HTTP_200_OK,
            active=False,
            reason=ResponseReason.NO_ORIGINAL_TRANSACTION_ID,
            debug=debug,
        )

    def _upstream_failure(self, err: AppStoreException) -> VerificationOutcome:
        if isinstance(err, AppStoreTimeoutException):
            status_code = status.HTTP_504_GATEWAY_TIMEOUT
            failure = UpstreamFailure.TIMEOUT
        elif isinstance(err, AppStoreInvalidCredentialsException):
            status_code = status.HTTP_401_UNAUTHORIZED
            failure = UpstreamFailure.AUTHENTICATION
        elif isinstance(err, AppStoreVerifierException):
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            failure = UpstreamFailure.VERIFIER
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            failure = UpstreamFailure.UPSTREAM

        logger.warning(f"Subscription status lookup failed ({failure}): {err.message}")

        return _outcome(
            status_code,
            active=False,
            reason=ResponseReason.APPLE_SERVER_API_ERROR,
            error=err.message,
            debug={
                "failure": failure,
                "httpStatusCode": err.http_status_code,
                "apiError": err.api_error,
                "env": self.settings.resolved_apple_environment.value,
                "keyId": self.settings.apple_key_id,
                "issuerId": mask_identifier(self.settings.apple_issuer_id),
            },
        )

    def _server_error(self, err: Exception) -> VerificationOutcome:
        return _outcome(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            active=False,
            reason=ResponseReason.SERVER_ERROR,
            error=str(err),
        )
