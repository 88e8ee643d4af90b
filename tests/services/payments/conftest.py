import json
from typing import Any, Callable
from unittest.mock import AsyncMock, Mock

import pytest
from faker import Faker

from app.core.config import Settings
from app.schemas import AppStoreCredentials

DAY_MS = 24 * 60 * 60 * 1000


# ==================== App Store Credentials Fixtures ====================


@pytest.fixture
def app_store_credentials(test_settings: Settings) -> AppStoreCredentials:
    """App Store Server API credentials of the test settings."""
    return test_settings.app_store_credentials


# ==================== App Store Client Mocks ====================


@pytest.fixture
def mock_app_store_client() -> AsyncMock:
    """Create mock AsyncAppStoreServerAPIClient."""
    mock_client = AsyncMock()
    mock_client.get_all_subscription_statuses = AsyncMock()
    mock_client.async_close = AsyncMock()
    return mock_client


@pytest.fixture
def mock_signed_data_verifier() -> Mock:
    """Create mock SignedDataVerifier."""
    mock_verifier = Mock()
    mock_verifier.verify_and_decode_signed_transaction = Mock()
    mock_verifier.verify_and_decode_renewal_info = Mock()
    return mock_verifier


# ==================== App Store Response Models ====================


@pytest.fixture
def make_status_response() -> Callable[..., Mock]:
    """
    Build a mock StatusResponse.

    Every argument is one subscription group, given as a list of
    (signedTransactionInfo, signedRenewalInfo) tuples.
    """

    def _make(*groups: list[tuple[str | None, str | None]]) -> Mock:
        mock_response = Mock()
        mock_response.data = []
        for items in groups:
            mock_group = Mock()
            mock_group.lastTransactions = []
            for signed_transaction, signed_renewal in items:
                mock_item = Mock()
                mock_item.signedTransactionInfo = signed_transaction
                mock_item.signedRenewalInfo = signed_renewal
                mock_group.lastTransactions.append(mock_item)
            mock_response.data.append(mock_group)
        return mock_response

    return _make


@pytest.fixture
def mock_jws_transaction_decoded(faker: Faker, now_ms_value: int) -> Mock:
    """Create mock JWSTransactionDecodedPayload."""
    mock_transaction = Mock()
    mock_transaction.originalTransactionId = str(
        faker.random_int(min=1000000000000000, max=9999999999999999)
    )
    mock_transaction.productId = f"com.{faker.word()}.subscription.monthly"
    mock_transaction.purchaseDate = now_ms_value - DAY_MS
    mock_transaction.expiresDate = now_ms_value + 30 * DAY_MS
    mock_transaction.revocationDate = None
    mock_transaction.cancellationDate = None
    return mock_transaction


@pytest.fixture
def mock_jws_renewal_decoded(mock_jws_transaction_decoded: Mock) -> Mock:
    """Create mock JWSRenewalInfoDecodedPayload."""
    mock_renewal = Mock()
    mock_renewal.productId = mock_jws_transaction_decoded.productId
    mock_renewal.autoRenewProductId = mock_jws_transaction_decoded.productId
    mock_renewal.gracePeriodExpiresDate = None
    return mock_renewal


# ==================== verifyReceipt Responses ====================


@pytest.fixture
def verify_receipt_response() -> Callable[[Any], AsyncMock]:
    """
    Build the async context manager returned by aiohttp ClientSession.post.

    Dicts and lists are sent as JSON, strings as the raw body.
    """

    def _make(body: Any) -> AsyncMock:
        mock_response = AsyncMock()
        mock_response.__aenter__.return_value = mock_response
        mock_response.__aexit__.return_value = None
        mock_response.text.return_value = body if isinstance(body, str) else json.dumps(body)
        return mock_response

    return _make


# ==================== Helper Fixtures ====================


@pytest.fixture
def now_ms_value() -> int:
    """A fixed decision time, 2024-01-01T00:00:00Z in epoch milliseconds."""
    return 1_704_067_200_000


@pytest.fixture
def sample_transaction_id(faker: Faker) -> str:
    """Generate a sample transaction ID."""
    return str(faker.random_int(min=1000000000000000, max=9999999999999999))


@pytest.fixture
def sample_product_id(faker: Faker) -> str:
    """Generate a sample product ID."""
    return f"com.{faker.word()}.subscription.{faker.random_element(['monthly', 'yearly', 'weekly'])}"


@pytest.fixture
def sample_receipt(faker: Faker) -> str:
    """Generate a base64-looking app receipt."""
    return "MIIT" + faker.pystr(min_chars=120, max_chars=120)
