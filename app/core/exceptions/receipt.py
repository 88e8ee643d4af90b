from app.core.exceptions.base import AppException
from app.schemas.entitlement import ReceiptFailureKind


class ReceiptRequestException(AppException):
    """
    Exception raised when a single verifyReceipt call yields no usable JSON body.

    Raised inside the legacy receipt resolver and turned into a failed
    ReceiptResolution before leaving it.
    """

    def __init__(
        self,
        kind: ReceiptFailureKind,
        message="verifyReceipt request failed",
        exception: Exception | None = None,
        raw: str | None = None,
    ):
        super().__init__(message, exception)
        self.kind = kind
        self.raw = raw
