from fastapi import Request

from app.services.payments.verification import VerificationService


def get_verification_service(request: Request) -> VerificationService:
    """
    Get the verification service built during application startup.

    Args:
        request: FastAPI request object

    Returns:
        VerificationService: The service stored on the application state
    """
    return request.app.state.verification_service
