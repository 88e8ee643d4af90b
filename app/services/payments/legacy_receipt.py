import json
from dataclasses import dataclass
from typing import Any

import aiohttp
from loguru import logger
from yarl import URL

from app.core.config import AppleEnvironment, Settings, SharedSecretPolicy
from app.core.constants import (
    MIN_RECEIPT_LENGTH,
    RAW_EXCERPT_LENGTH,
    VerifyReceiptStatus,
    VerifyReceiptURL,
)
from app.core.exceptions.receipt import ReceiptRequestException
from app.core.utils import to_epoch_ms, truncate_text
from app.schemas import ReceiptFailureKind, ReceiptResolution

# Status code -> environment to retry against, each usable once per resolve
REDIRECTS = {
    VerifyReceiptStatus.SANDBOX_RECEIPT_IN_PRODUCTION: AppleEnvironment.SANDBOX,
    VerifyReceiptStatus.PRODUCTION_RECEIPT_IN_SANDBOX: AppleEnvironment.PRODUCTION,
}


def status_code(payload: dict[str, Any]) -> int | None:
    status = payload.get("status")
    if isinstance(status, int) and not isinstance(status, bool):
        return status

    return None


def is_plausible_receipt(receipt_b64: Any) -> bool:
    return isinstance(receipt_b64, str) and len(receipt_b64) >= MIN_RECEIPT_LENGTH


def extract_original_transaction_id(payload: dict[str, Any]) -> str | None:
    """
    Pick the original transaction id out of a successful verifyReceipt body.

    The entry of latest_receipt_info with the greatest expires_date_ms wins,
    the first one on equal expiry. Without a usable entry there, the first
    receipt.in_app entry is used.

    Args:
        payload: verifyReceipt response body with status 0

    Returns:
        str | None: The original transaction id, None if the body has none
    """
    latest = payload.get("latest_receipt_info")
    if isinstance(latest, list):
        entries = [entry for entry in latest if isinstance(entry, dict)]
        if entries:
            newest = max(entries, key=lambda entry: to_epoch_ms(entry.get("expires_date_ms")) or 0)
            if newest.get("original_transaction_id"):
                return str(newest["original_transaction_id"])

    receipt = payload.get("receipt")
    in_app = receipt.get("in_app") if isinstance(receipt, dict) else None
    if isinstance(in_app, list) and in_app and isinstance(in_app[0], dict):
        if in_app[0].get("original_transaction_id"):
            return str(in_app[0]["original_transaction_id"])

    return None


@dataclass
class LegacyReceiptResolver:
    """
    Derives an Original Transaction Identifier from an app receipt.

    Calls Apple's legacy verifyReceipt endpoint, starting in the configured
    store environment and following the 21007/21008 environment redirects at
    most once per direction. Failures are returned as a failed
    ReceiptResolution, never raised.
    """

    settings: Settings

    def _build_body(self, receipt_b64: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "receipt-data": receipt_b64,
            "exclude-old-transactions": False,
        }

        # Required by Apple for auto-renewable subscription receipts
        if self.settings.apple_shared_secret:
            body["password"] = self.settings.apple_shared_secret

        return body

    async def _post(
        self,
        session: aiohttp.ClientSession,
        url: URL,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Send one verifyReceipt request.

        Args:
            session: HTTP session shared by the calls of one resolve
            url: verifyReceipt endpoint
            body: JSON request body

        Returns:
            dict: The decoded response body

        Raises:
            ReceiptRequestException: On timeout, transport error or non-JSON body
        """
        try:
            async with session.post(url, json=body) as response:
                text = await response.text(errors="replace")
        except TimeoutError as err:
            logger.error(f"verifyReceipt timed out: {url.host}")
            raise ReceiptRequestException(
                ReceiptFailureKind.TIMEOUT, "verifyReceipt timed out", err
            ) from err
        except aiohttp.ClientError as err:
            logger.error(f"verifyReceipt network error ({url.host}): {err}")
            raise ReceiptRequestException(
                ReceiptFailureKind.NETWORK_ERROR, "verifyReceipt network error", err
            ) from err

        try:
            payload = json.loads(text)
        except ValueError as err:
            logger.warning(f"verifyReceipt returned a non-JSON body ({url.host})")
            raise ReceiptRequestException(
                ReceiptFailureKind.NON_JSON,
                "verifyReceipt returned a non-JSON body",
                err,
                raw=truncate_text(text, RAW_EXCERPT_LENGTH),
            ) from err

        if not isinstance(payload, dict):
            logger.warning(f"verifyReceipt returned a non-object JSON body ({url.host})")
            raise ReceiptRequestException(
                ReceiptFailureKind.NON_JSON,
                "verifyReceipt returned a non-object JSON body",
                raw=truncate_text(text, RAW_EXCERPT_LENGTH),
            )

        return payload

    async def resolve(self, receipt_b64: Any) -> ReceiptResolution:
        """
        Resolve a receipt to its Original Transaction Identifier.

        Example:
            >>> resolver = LegacyReceiptResolver(settings=settings)
            >>> resolution = await resolver.resolve(receipt_b64)
            >>> if resolution.success:
            ...     print(resolution.original_transaction_id)

        Args:
            receipt_b64: Base64 app receipt as sent by the client

        Returns:
            ReceiptResolution: The identifier and vendor payload on success,
                the failure kind and diagnostics otherwise
        """
        if not is_plausible_receipt(receipt_b64):
            logger.info("Receipt missing or too short, skipping verifyReceipt")
            return ReceiptResolution.failed(
                ReceiptFailureKind.MALFORMED_RECEIPT,
                status=VerifyReceiptStatus.MALFORMED_RECEIPT,
            )

        environment = self.settings.resolved_apple_environment

        if (
            not self.settings.apple_shared_secret
            and self.settings.apple_shared_secret_policy == SharedSecretPolicy.REQUIRED
        ):
            logger.error("APPLE_SHARED_SECRET is required but not configured")
            return ReceiptResolution.failed(
                ReceiptFailureKind.MISSING_SHARED_SECRET,
                environment=environment.value,
            )

        body = self._build_body(receipt_b64)
        redirects = dict(REDIRECTS)
        timeout = aiohttp.ClientTimeout(total=self.settings.legacy_receipt_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                payload = await self._post(session, VerifyReceiptURL.for_environment(environment), body)

                while status_code(payload) in redirects:
                    status = status_code(payload)
                    environment = redirects.pop(status)
                    logger.info(f"verifyReceipt status {status}, retrying in {environment.value}")
                    payload = await self._post(
                        session, VerifyReceiptURL.for_environment(environment), body
                    )
        except ReceiptRequestException as err:
            return ReceiptResolution.failed(
                err.kind,
                environment=environment.value,
                raw=err.raw,
                error=str(err.exception or err.message),
            )

        status = status_code(payload)
        has_latest = isinstance(payload.get("latest_receipt_info"), list)
        has_receipt = isinstance(payload.get("receipt"), dict)

        if status != VerifyReceiptStatus.OK:
            logger.info(f"verifyReceipt rejected the receipt with status {status}")
            return ReceiptResolution.failed(
                ReceiptFailureKind.VENDOR_STATUS,
                status=status,
                environment=environment.value,
                has_latest=has_latest,
                has_receipt=has_receipt,
            )

        original_transaction_id = extract_original_transaction_id(payload)
        if original_transaction_id is None:
            logger.warning("verifyReceipt succeeded but carried no original transaction id")
            return ReceiptResolution.failed(
                ReceiptFailureKind.NO_IDENTIFIER,
                status=status,
                environment=environment.value,
                has_latest=has_latest,
                has_receipt=has_receipt,
            )

        logger.info(f"Receipt resolved to original transaction {original_transaction_id}")
        return ReceiptResolution.resolved(original_transaction_id, payload, environment.value)
