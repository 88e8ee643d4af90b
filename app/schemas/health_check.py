from app.schemas.base import BaseSchema


class HealthCheckResponse(BaseSchema):
    """Schema for health check response"""

    status: str


class DiagnosticsEnvironment(BaseSchema):
    """Presence flags of the store configuration, never the values"""

    apple_environment: str
    verification_mode: str
    has_issuer_id: bool
    has_key_id: bool
    has_bundle_id: bool
    has_shared_secret: bool
    shared_secret_policy: str
    root_certificates: int
    key_len: int
    key_starts_with: str


class DiagnosticsResponse(BaseSchema):
    """Schema for configuration sanity check response"""

    ok: bool
    issues: list[str]
    env: DiagnosticsEnvironment
