from yarl import URL


class VerifyReceiptURL:
    """
    Legacy verifyReceipt endpoints.

    Example:
        ```python
        from app.core.constants import VerifyReceiptURL

        url = VerifyReceiptURL.for_environment("sandbox")
        # Result: URL("https://sandbox.itunes.apple.com/verifyReceipt")
        ```
    """

    PRODUCTION = URL("https://buy.itunes.apple.com/verifyReceipt")
    SANDBOX = URL("https://sandbox.itunes.apple.com/verifyReceipt")

    @classmethod
    def for_environment(cls, environment: str) -> URL:
        if environment == "production":
            return cls.PRODUCTION

        return cls.SANDBOX


class VerifyReceiptStatus:
    """
    Status codes returned in the verifyReceipt response body.

    Only the codes this service acts on are listed, every other non-zero
    status is reported back as is.
    """

    OK = 0

    # The data in the receipt-data property was malformed or missing
    MALFORMED_RECEIPT = 21002

    # Sandbox receipt sent to the production environment
    SANDBOX_RECEIPT_IN_PRODUCTION = 21007

    # Production receipt sent to the sandbox environment
    PRODUCTION_RECEIPT_IN_SANDBOX = 21008


class ResponseReason:
    """Machine-readable reasons returned to the client app."""

    MISSING_RECEIPT = "MISSING_RECEIPT"
    MISSING_ORIGINAL_TRANSACTION_ID = "MISSING_ORIGINAL_TRANSACTION_ID"
    NO_ORIGINAL_TRANSACTION_ID = "NO_ORIGINAL_TRANSACTION_ID"
    APPLE_SERVER_API_ERROR = "APPLE_SERVER_API_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


class UpstreamFailure:
    """Kinds of App Store Server API failures reported in the debug block."""

    AUTHENTICATION = "AUTHENTICATION"
    TIMEOUT = "TIMEOUT"
    UPSTREAM = "UPSTREAM"
    VERIFIER = "VERIFIER"


# Shorter receipts cannot be a real App Store receipt
MIN_RECEIPT_LENGTH = 20

# Length of the raw body excerpt kept when verifyReceipt answers with non-JSON
RAW_EXCERPT_LENGTH = 200
