from typing import Annotated

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from app.api.deps import get_verification_service
from app.schemas import (
    EntitlementResponse,
    VerifyOriginalTransactionRequest,
    VerifyReceiptRequest,
)
from app.services.payments.verification import VerificationService

router = APIRouter()

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": EntitlementResponse},
    status.HTTP_401_UNAUTHORIZED: {"model": EntitlementResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": EntitlementResponse},
    status.HTTP_504_GATEWAY_TIMEOUT: {"model": EntitlementResponse},
}


@router.post(
    "/verify_apple_receipt",
    response_model=EntitlementResponse,
    responses=ERROR_RESPONSES,
    summary="Verify app receipt",
    description=(
        "Resolve the original transaction id of an app receipt through verifyReceipt "
        "and decide the subscription entitlement from the App Store Server API."
    ),
)
async def verify_apple_receipt(
    service: Annotated[VerificationService, Depends(get_verification_service)],
    payload: Annotated[VerifyReceiptRequest | None, Body()] = None,
):
    payload = payload or VerifyReceiptRequest()
    outcome = await service.verify_receipt(payload.receipt_b64, payload.product_id)

    return JSONResponse(status_code=outcome.status_code, content=outcome.content())


@router.post(
    "/verify_by_oid",
    response_model=EntitlementResponse,
    responses=ERROR_RESPONSES,
    summary="Verify original transaction id",
    description="Decide the subscription entitlement for an already known original transaction id.",
)
async def verify_by_original_transaction_id(
    service: Annotated[VerificationService, Depends(get_verification_service)],
    payload: Annotated[VerifyOriginalTransactionRequest | None, Body()] = None,
):
    payload = payload or VerifyOriginalTransactionRequest()
    outcome = await service.verify_original_transaction_id(
        payload.original_transaction_id, payload.product_id
    )

    return JSONResponse(status_code=outcome.status_code, content=outcome.content())
