from pydantic import ConfigDict, Field

from app.schemas import BaseSchema


class AppStoreCredentials(BaseSchema):
    """
    App Store Connect API credentials.

    Used to authenticate with Apple's App Store Server API
    for subscription status lookups.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    private_key: str = Field(
        ...,
        description="Content of .p8 private key file from App Store Connect",
    )
    key_id: str = Field(
        ...,
        description="Key ID from App Store Connect (10-character string)",
    )
    issuer_id: str = Field(
        ...,
        description="Issuer ID from App Store Connect (UUID format)",
    )
    bundle_id: str = Field(
        ...,
        description="App bundle identifier",
    )
    app_apple_id: int | None = Field(
        default=None,
        description="Apple ID of the app, required by signed data verification in production",
    )
