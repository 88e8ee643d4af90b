from unittest.mock import patch

import aiohttp
import pytest

from app.core.config import AppleEnvironment, Settings, SharedSecretPolicy
from app.core.constants import VerifyReceiptURL
from app.schemas import ReceiptFailureKind
from app.services.payments.legacy_receipt import (
    LegacyReceiptResolver,
    extract_original_transaction_id,
    is_plausible_receipt,
)

SUCCESS_BODY = {
    "status": 0,
    "latest_receipt_info": [
        {"product_id": "p1", "expires_date_ms": "100", "original_transaction_id": "1000"},
        {"product_id": "p1", "expires_date_ms": "200", "original_transaction_id": "2000"},
    ],
    "receipt": {"in_app": [{"product_id": "p1", "original_transaction_id": "3000"}]},
}


class TestExtractOriginalTransactionId:
    def test_latest_expiry_wins(self):
        assert extract_original_transaction_id(SUCCESS_BODY) == "2000"

    def test_first_entry_wins_equal_expiry(self):
        payload = {
            "latest_receipt_info": [
                {"expires_date_ms": "200", "original_transaction_id": "1000"},
                {"expires_date_ms": "200", "original_transaction_id": "2000"},
            ]
        }

        assert extract_original_transaction_id(payload) == "1000"

    def test_falls_back_to_in_app(self):
        payload = {
            "latest_receipt_info": [],
            "receipt": {"in_app": [{"original_transaction_id": 3000}]},
        }

        assert extract_original_transaction_id(payload) == "3000"

    def test_newest_entry_without_identifier_falls_back_to_in_app(self):
        payload = {
            "latest_receipt_info": [{"expires_date_ms": "200"}],
            "receipt": {"in_app": [{"original_transaction_id": "3000"}]},
        }

        assert extract_original_transaction_id(payload) == "3000"

    def test_no_identifier(self):
        assert extract_original_transaction_id({"status": 0, "receipt": {"in_app": []}}) is None


class TestIsPlausibleReceipt:
    @pytest.mark.parametrize(
        "receipt, expected",
        [(None, False), ("", False), ("short", False), (12345, False), ("x" * 20, True)],
    )
    def test_is_plausible_receipt(self, receipt, expected: bool):
        assert is_plausible_receipt(receipt) is expected


@pytest.mark.anyio
class TestLegacyReceiptResolver:
    """Test receipt resolution through verifyReceipt."""

    @pytest.mark.parametrize("receipt", [None, "", "too-short", 12345, {"receipt": "x"}])
    async def test_malformed_receipt_skips_network(self, receipt, test_settings: Settings):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch("aiohttp.ClientSession.post") as mock_post:
            resolution = await resolver.resolve(receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.MALFORMED_RECEIPT
        assert resolution.status == 21002
        mock_post.assert_not_called()

    async def test_resolves_in_production(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post", return_value=verify_receipt_response(SUCCESS_BODY)
        ) as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is True
        assert resolution.original_transaction_id == "2000"
        assert resolution.environment == "production"
        assert resolution.payload == SUCCESS_BODY
        mock_post.assert_called_once()
        assert mock_post.call_args[0][0] == VerifyReceiptURL.PRODUCTION

    async def test_request_body(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post", return_value=verify_receipt_response(SUCCESS_BODY)
        ) as mock_post:
            await resolver.resolve(sample_receipt)

        assert mock_post.call_args[1]["json"] == {
            "receipt-data": sample_receipt,
            "exclude-old-transactions": False,
            "password": test_settings.apple_shared_secret,
        }

    async def test_request_body_without_shared_secret(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        settings = test_settings.model_copy(update={"apple_shared_secret": ""})
        resolver = LegacyReceiptResolver(settings=settings)

        with patch(
            "aiohttp.ClientSession.post", return_value=verify_receipt_response(SUCCESS_BODY)
        ) as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is True
        assert "password" not in mock_post.call_args[1]["json"]

    async def test_required_shared_secret_missing(self, test_settings: Settings, sample_receipt: str):
        settings = test_settings.model_copy(
            update={
                "apple_shared_secret": "",
                "apple_shared_secret_policy": SharedSecretPolicy.REQUIRED,
            }
        )
        resolver = LegacyReceiptResolver(settings=settings)

        with patch("aiohttp.ClientSession.post") as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.MISSING_SHARED_SECRET
        mock_post.assert_not_called()

    async def test_sandbox_receipt_retried_once_in_sandbox(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post",
            side_effect=[
                verify_receipt_response({"status": 21007}),
                verify_receipt_response(SUCCESS_BODY),
            ],
        ) as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is True
        assert resolution.environment == "sandbox"
        assert [call[0][0] for call in mock_post.call_args_list] == [
            VerifyReceiptURL.PRODUCTION,
            VerifyReceiptURL.SANDBOX,
        ]

    async def test_production_receipt_retried_in_production(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        settings = test_settings.model_copy(update={"apple_environment": AppleEnvironment.SANDBOX})
        resolver = LegacyReceiptResolver(settings=settings)

        with patch(
            "aiohttp.ClientSession.post",
            side_effect=[
                verify_receipt_response({"status": 21008}),
                verify_receipt_response(SUCCESS_BODY),
            ],
        ) as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is True
        assert resolution.environment == "production"
        assert [call[0][0] for call in mock_post.call_args_list] == [
            VerifyReceiptURL.SANDBOX,
            VerifyReceiptURL.PRODUCTION,
        ]

    async def test_redirect_followed_once_per_direction(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post",
            side_effect=[
                verify_receipt_response({"status": 21007}),
                verify_receipt_response({"status": 21008}),
                verify_receipt_response({"status": 21007}),
            ],
        ) as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert mock_post.call_count == 3
        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.VENDOR_STATUS
        assert resolution.status == 21007
        assert resolution.environment == "production"

    async def test_repeated_redirect_is_not_followed(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post",
            side_effect=[
                verify_receipt_response({"status": 21007}),
                verify_receipt_response({"status": 21007}),
            ],
        ) as mock_post:
            resolution = await resolver.resolve(sample_receipt)

        assert mock_post.call_count == 2
        assert resolution.failure == ReceiptFailureKind.VENDOR_STATUS
        assert resolution.status == 21007

    async def test_vendor_status(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post", return_value=verify_receipt_response({"status": 21003})
        ):
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.VENDOR_STATUS
        assert resolution.status == 21003
        assert resolution.has_latest is False
        assert resolution.has_receipt is False

    async def test_non_json_body(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)
        html = "<html>" + "x" * 500 + "</html>"

        with patch("aiohttp.ClientSession.post", return_value=verify_receipt_response(html)):
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.NON_JSON
        assert resolution.raw == html[:200]
        assert resolution.environment == "production"

    async def test_non_object_json_body(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch("aiohttp.ClientSession.post", return_value=verify_receipt_response([1, 2])):
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.failure == ReceiptFailureKind.NON_JSON
        assert resolution.raw == "[1, 2]"

    async def test_network_error(self, test_settings: Settings, sample_receipt: str):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post",
            side_effect=aiohttp.ClientConnectionError("Connection refused"),
        ):
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.NETWORK_ERROR
        assert "Connection refused" in resolution.error

    async def test_timeout(self, test_settings: Settings, sample_receipt: str):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch("aiohttp.ClientSession.post", side_effect=TimeoutError()):
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.TIMEOUT

    async def test_no_identifier(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)
        body = {"status": 0, "latest_receipt_info": [{"product_id": "p1"}], "receipt": {}}

        with patch("aiohttp.ClientSession.post", return_value=verify_receipt_response(body)):
            resolution = await resolver.resolve(sample_receipt)

        assert resolution.success is False
        assert resolution.failure == ReceiptFailureKind.NO_IDENTIFIER
        assert resolution.status == 0
        assert resolution.has_latest is True
        assert resolution.has_receipt is True

    async def test_resolving_twice_gives_the_same_result(
        self, test_settings: Settings, sample_receipt: str, verify_receipt_response
    ):
        resolver = LegacyReceiptResolver(settings=test_settings)

        with patch(
            "aiohttp.ClientSession.post",
            side_effect=[
                verify_receipt_response(SUCCESS_BODY),
                verify_receipt_response(SUCCESS_BODY),
            ],
        ):
            first = await resolver.resolve(sample_receipt)
            second = await resolver.resolve(sample_receipt)

        assert first == second
