from .base import BaseSchema, CamelCaseSchema
from .health_check import HealthCheckResponse, DiagnosticsEnvironment, DiagnosticsResponse
from .app_store import AppStoreCredentials
from .entitlement import (
    CandidateRecord,
    DecodedStatus,
    EntitlementDecision,
    EntitlementReason,
    ReceiptFailureKind,
    ReceiptResolution,
    RenewalRecord,
    TransactionPair,
    TransactionRecord,
)
from .verification import (
    EntitlementResponse,
    VerificationOutcome,
    VerifyOriginalTransactionRequest,
    VerifyReceiptRequest,
)

__all__ = [
    "BaseSchema",
    "CamelCaseSchema",
    "HealthCheckResponse",
    "DiagnosticsEnvironment",
    "DiagnosticsResponse",
    "AppStoreCredentials",
    "CandidateRecord",
    "DecodedStatus",
    "EntitlementDecision",
    "EntitlementReason",
    "ReceiptFailureKind",
    "ReceiptResolution",
    "RenewalRecord",
    "TransactionPair",
    "TransactionRecord",
    "EntitlementResponse",
    "VerificationOutcome",
    "VerifyOriginalTransactionRequest",
    "VerifyReceiptRequest",
]
