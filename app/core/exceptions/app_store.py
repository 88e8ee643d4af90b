from app.core.exceptions.base import AppException


class AppStoreException(AppException):
    """
    Exception related to App Store Server API operations.

    Carries the upstream HTTP status code and Apple API error code when the
    failure came from an API response, 0 and None otherwise.
    """

    def __init__(
        self,
        message,
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception)
        self.http_status_code = http_status_code
        self.api_error = api_error


class AppStorePrivateKeyMissingException(AppStoreException):
    """
    Exception raised when the App Store private key is missing or unreadable
    """

    def __init__(
        self,
        message="App Store private key is missing or invalid",
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreInvalidCredentialsException(AppStoreException):
    """
    Exception raised when Apple rejects the request authentication
    """

    def __init__(
        self,
        message="App Store credentials are invalid",
        exception: Exception | None = None,
        http_status_code: int = 401,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreNotFoundException(AppStoreException):
    """
    Exception raised when the original transaction id is unknown to Apple
    """

    def __init__(
        self,
        message="App Store resource not found",
        exception: Exception | None = None,
        http_status_code: int = 404,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreRateLimitExceededException(AppStoreException):
    """
    Exception raised when the App Store connection is rate-limited
    """

    def __init__(
        self,
        message="App Store connection rate-limited",
        exception: Exception | None = None,
        http_status_code: int = 429,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreTimeoutException(AppStoreException):
    """
    Exception raised when the App Store call does not finish within its timeout
    """

    def __init__(
        self,
        message="App Store connection timed out",
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreConnectionAbortedException(AppStoreException):
    """
    Exception raised when Apple reports a server error or the call fails unexpectedly
    """

    def __init__(
        self,
        message="App Store connection aborted",
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreConnectionErrorException(AppStoreException):
    """
    Exception raised for any other App Store API error response
    """

    def __init__(
        self,
        message="App Store connection error",
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreValidationException(AppStoreException):
    """
    Exception raised for invalid input or undecodable App Store data
    """

    def __init__(
        self,
        message="App Store validation error",
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)


class AppStoreVerifierException(AppStoreException):
    """
    Exception raised when the signed data verifier cannot be created
    """

    def __init__(
        self,
        message="Signed data verifier could not be created",
        exception: Exception | None = None,
        http_status_code: int = 0,
        api_error: int | None = None,
    ):
        super().__init__(message, exception, http_status_code, api_error)
