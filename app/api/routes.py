from fastapi import APIRouter

from app.api.endpoints import verification
from app.core.config import settings
from app.schemas import DiagnosticsEnvironment, DiagnosticsResponse, HealthCheckResponse

api_router = APIRouter()


@api_router.get(
    "/health",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Health Check",
)
async def health_check():
    return {"status": "healthy"}


@api_router.get(
    "/diag",
    response_model=DiagnosticsResponse,
    tags=["Health"],
    summary="Configuration Check",
    description="Report store configuration problems without exposing secret values.",
)
async def diagnostics():
    pem = settings.apple_private_key_pem
    issues = settings.config_issues

    return DiagnosticsResponse(
        ok=not issues,
        issues=issues,
        env=DiagnosticsEnvironment(
            apple_environment=settings.resolved_apple_environment.value,
            verification_mode=settings.verification_mode.value,
            has_issuer_id=bool(settings.apple_issuer_id),
            has_key_id=bool(settings.apple_key_id),
            has_bundle_id=bool(settings.apple_bundle_id),
            has_shared_secret=bool(settings.apple_shared_secret),
            shared_secret_policy=settings.apple_shared_secret_policy.value,
            root_certificates=len(settings.root_certificate_paths),
            key_len=len(pem),
            key_starts_with=pem.split("\n")[0] if pem else "NONE",
        ),
    )


api_router.include_router(
    verification.router,
    tags=["Verification"],
)
