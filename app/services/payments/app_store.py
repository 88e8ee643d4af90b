from dataclasses import dataclass, field

import anyio
import httpx
from appstoreserverlibrary.api_client import APIException, AsyncAppStoreServerAPIClient
from appstoreserverlibrary.models.Environment import Environment
from appstoreserverlibrary.models.JWSRenewalInfoDecodedPayload import (
    JWSRenewalInfoDecodedPayload,
)
from appstoreserverlibrary.models.JWSTransactionDecodedPayload import JWSTransactionDecodedPayload
from appstoreserverlibrary.models.StatusResponse import StatusResponse
from appstoreserverlibrary.signed_data_verifier import SignedDataVerifier
from loguru import logger

from app.core.config import Settings
from app.core.exceptions.app_store import (
    AppStoreConnectionAbortedException,
    AppStoreConnectionErrorException,
    AppStoreException,
    AppStoreInvalidCredentialsException,
    AppStoreNotFoundException,
    AppStorePrivateKeyMissingException,
    AppStoreRateLimitExceededException,
    AppStoreTimeoutException,
    AppStoreValidationException,
    AppStoreVerifierException,
)
from app.core.utils import to_epoch_ms
from app.schemas import AppStoreCredentials, RenewalRecord, TransactionRecord


def transaction_record_from_payload(payload: JWSTransactionDecodedPayload) -> TransactionRecord:
    """
    Map a decoded signed transaction to a TransactionRecord.

    Args:
        payload: Transaction decoded by SignedDataVerifier

    Returns:
        TransactionRecord: The plain transaction fields
    """
    return TransactionRecord(
        product_id=payload.productId,
        expires_date=to_epoch_ms(payload.expiresDate),
        revocation_date=to_epoch_ms(payload.revocationDate),
        # The decoded payload model has no cancellationDate field, this is always None
        cancellation_date=to_epoch_ms(getattr(payload, "cancellationDate", None)),
        purchase_date=to_epoch_ms(payload.purchaseDate),
        original_transaction_id=payload.originalTransactionId,
    )


def renewal_record_from_payload(payload: JWSRenewalInfoDecodedPayload) -> RenewalRecord:
    """
    Map a decoded signed renewal info to a RenewalRecord.

    Args:
        payload: Renewal info decoded by SignedDataVerifier

    Returns:
        RenewalRecord: The plain renewal fields
    """
    return RenewalRecord(
        grace_period_expires_date=to_epoch_ms(payload.gracePeriodExpiresDate),
        auto_renew_product_id=payload.autoRenewProductId,
        product_id=payload.productId,
    )


@dataclass
class AppStoreService:
    """
    App Store Server API client wrapper.

    Looks up all subscription statuses for an original transaction id and
    decodes the signed transaction and renewal records they contain.

    The API client is created on first use, so a service with missing or
    broken credentials still starts and reports the problem per request.
    """

    settings: Settings
    _client: AsyncAppStoreServerAPIClient | None = field(init=False, default=None)
    _verifier: SignedDataVerifier | None = field(init=False, default=None)

    @property
    def credentials(self) -> AppStoreCredentials:
        return self.settings.app_store_credentials

    @property
    def current_environment(self) -> Environment:
        """
        Get the current App Store environment.

        Returns:
            Environment: The App Store environment (PRODUCTION or SANDBOX)
        """
        return self.settings.store_environment

    @property
    def client(self) -> AsyncAppStoreServerAPIClient:
        """
        Get the App Store Server API client, creating it on first access.

        Returns:
            AsyncAppStoreServerAPIClient: The App Store API client

        Raises:
            AppStorePrivateKeyMissingException: If the private key is missing or unreadable
            AppStoreException: If client initialization fails
        """
        if self._client is None:
            self._client = self._create_client(self.credentials)

        return self._client

    @property
    def verifier(self) -> SignedDataVerifier:
        """
        Get the signed data verifier, creating it on first access.

        Returns:
            SignedDataVerifier: Verifier bound to the configured root certificates

        Raises:
            AppStoreVerifierException: If the root certificates cannot be read or
                the verifier rejects its configuration
        """
        if self._verifier is None:
            try:
                root_certificates = [
                    path.read_bytes() for path in self.settings.root_certificate_paths
                ]
            except OSError as err:
                logger.error(f"Apple root certificate could not be read: {err}")
                raise AppStoreVerifierException(
                    "Apple root certificate could not be read", err
                ) from err

            try:
                self._verifier = SignedDataVerifier(
                    root_certificates=root_certificates,
                    enable_online_checks=self.settings.apple_enable_online_checks,
                    environment=self.current_environment,
                    bundle_id=self.credentials.bundle_id,
                    app_apple_id=self.credentials.app_apple_id,
                )
            except Exception as err:
                logger.error(f"Signed data verifier could not be created: {err}")
                raise AppStoreVerifierException(
                    f"Signed data verifier could not be created: {err}", err
                ) from err

        return self._verifier

    def _create_client(self, credentials: AppStoreCredentials) -> AsyncAppStoreServerAPIClient:
        if not credentials.private_key:
            logger.error("App Store private key is not configured")
            raise AppStorePrivateKeyMissingException()

        try:
            client = AsyncAppStoreServerAPIClient(
                signing_key=credentials.private_key.encode("utf-8"),
                key_id=credentials.key_id,
                issuer_id=credentials.issuer_id,
                bundle_id=credentials.bundle_id,
                environment=self.current_environment,
            )
            logger.info(
                f"App Store Server API client initialized ({self.current_environment.value})"
            )
            return client
        except ValueError as err:
            logger.exception("Invalid App Store credentials")
            raise AppStorePrivateKeyMissingException(
                "App Store private key could not be loaded", err
            ) from err
        except Exception as err:
            logger.exception("Unknown error initializing App Store client")
            raise AppStoreException("Failed to initialize App Store client", err) from err

    async def close_client(self) -> None:
        """
        Close the App Store Server API client.

        Ensures that all resources are properly released.
        """
        if self._client is not None:
            await self._client.async_close()
            self._client = None
            logger.info("App Store Server API client closed successfully")

    def _validate_transaction_id(self, transaction_id: str) -> None:
        """
        Validate transaction ID format.

        Raises:
            AppStoreValidationException: If transaction_id is empty or invalid
        """
        if not transaction_id or not isinstance(transaction_id, str):
            logger.error("Transaction ID is empty or invalid")
            raise AppStoreValidationException("Transaction ID must be a non-empty string")

        if len(transaction_id.strip()) == 0:
            logger.error("Transaction ID is empty after stripping whitespace")
            raise AppStoreValidationException("Transaction ID cannot be empty or whitespace")

    async def get_subscription_statuses(
        self,
        original_transaction_id: str,
        timeout: float | None = None,
    ) -> StatusResponse:
        """
        Get the statuses of all subscriptions in the lineage of a transaction.

        Example:
            >>> service = AppStoreService(settings=settings)
            >>> status = await service.get_subscription_statuses("1000000123456789")
            >>> for group in status.data:
            ...     print(len(group.lastTransactions))

        Args:
            original_transaction_id: The original transaction ID of the subscription
            timeout: Seconds before the lookup is aborted, defaults to
                settings.status_lookup_timeout

        Returns:
            StatusResponse: Subscription groups with their last transactions

        Raises:
            AppStoreValidationException: If original_transaction_id is invalid
            AppStoreInvalidCredentialsException: If Apple rejects the authentication
            AppStoreNotFoundException: If the transaction is unknown to Apple
            AppStoreRateLimitExceededException: If rate limit exceeded
            AppStoreTimeoutException: If the lookup exceeds the timeout
            AppStoreConnectionAbortedException: If Apple reports a server error or
                the call fails unexpectedly
            AppStoreConnectionErrorException: For any other API error
        """
        self._validate_transaction_id(original_transaction_id)

        if timeout is None:
            timeout = self.settings.status_lookup_timeout

        client = self.client

        try:
            logger.info(f"Fetching subscription statuses: {original_transaction_id}")

            with anyio.fail_after(timeout):
                response: StatusResponse = await client.get_all_subscription_statuses(
                    original_transaction_id
                )

            logger.info(
                f"Subscription statuses retrieved: {original_transaction_id}, "
                f"Groups count: {len(response.data) if response.data else 0}"
            )

            return response

        except (TimeoutError, httpx.TimeoutException) as err:
            logger.error(
                f"Subscription status lookup timed out after {timeout}s: "
                f"{original_transaction_id}"
            )
            raise AppStoreTimeoutException(
                f"Subscription status lookup timed out after {timeout}s", err
            ) from err
        except APIException as err:
            if err.http_status_code == 401:
                logger.exception("App Store API authentication failed")
                raise AppStoreInvalidCredentialsException(
                    "Invalid App Store credentials", err, api_error=err.raw_api_error
                ) from err
            elif err.http_status_code == 404:
                logger.exception(f"Subscription not found: {original_transaction_id}")
                raise AppStoreNotFoundException(
                    f"Subscription '{original_transaction_id}' not found",
                    err,
                    api_error=err.raw_api_error,
                ) from err
            elif err.http_status_code == 429:
                logger.exception(f"Rate limit exceeded for subscription: {original_transaction_id}")
                raise AppStoreRateLimitExceededException(
                    "App Store API rate limit exceeded", err, api_error=err.raw_api_error
                ) from err
            elif err.http_status_code >= 500:
                logger.exception(
                    f"App Store API server error for subscription: {original_transaction_id}"
                )
                raise AppStoreConnectionAbortedException(
                    "App Store server error occurred",
                    err,
                    http_status_code=err.http_status_code,
                    api_error=err.raw_api_error,
                ) from err
            else:
                logger.exception(f"App Store API error ({err.http_status_code}): {err}")
                raise AppStoreConnectionErrorException(
                    f"Failed to get subscription statuses: HTTP {err.http_status_code}",
                    err,
                    http_status_code=err.http_status_code,
                    api_error=err.raw_api_error,
                ) from err
        except Exception as err:
            logger.exception(
                f"Unexpected error fetching statuses for {original_transaction_id}: {err}"
            )
            raise AppStoreConnectionAbortedException(
                "Failed to get subscription statuses due to unexpected error", err
            ) from err

    def decode_transaction(self, signed_transaction_info: str) -> TransactionRecord:
        """
        Verify and decode a signed transaction.

        Args:
            signed_transaction_info: JWS signedTransactionInfo from a status item

        Returns:
            TransactionRecord: Decoded transaction fields

        Raises:
            AppStoreValidationException: If the payload is missing or fails verification
            AppStoreVerifierException: If the verifier cannot be created
        """
        if not signed_transaction_info:
            raise AppStoreValidationException("Invalid signed transaction info: missing data")

        verifier = self.verifier

        try:
            payload = verifier.verify_and_decode_signed_transaction(signed_transaction_info)
        except Exception as err:
            logger.warning(f"Error decoding transaction info: {err}")
            raise AppStoreValidationException("Failed to decode transaction info", err) from err

        return transaction_record_from_payload(payload)

    def decode_renewal_info(self, signed_renewal_info: str) -> RenewalRecord:
        """
        Verify and decode a signed renewal info.

        Args:
            signed_renewal_info: JWS signedRenewalInfo from a status item

        Returns:
            RenewalRecord: Decoded renewal fields

        Raises:
            AppStoreValidationException: If the payload is missing or fails verification
            AppStoreVerifierException: If the verifier cannot be created
        """
        if not signed_renewal_info:
            raise AppStoreValidationException("Invalid signed renewal info: missing data")

        verifier = self.verifier

        try:
            payload = verifier.verify_and_decode_renewal_info(signed_renewal_info)
        except Exception as err:
            logger.warning(f"Error decoding renewal info: {err}")
            raise AppStoreValidationException("Failed to decode renewal info", err) from err

        return renewal_record_from_payload(payload)
