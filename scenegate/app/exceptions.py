"""Custom exceptions for the SceneGate application."""


class GatewayException(Exception):
    """Base class for SceneGate exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(GatewayException):
    """Raised when an admission check denies a request.

    Carries the stable reason code and the Retry-After hint in seconds.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, code: str, message: str, retry_after: int):
        self.code = code
        self.retry_after = retry_after
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API response format."""
        return {
            "error": True,
            "type": "rate_limit_error",
            "code": self.code,
            "message": self.message,
        }


class InvalidSceneRequestError(GatewayException):
    """Raised when the scene request body is unusable.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, message: str = "No scene description provided"):
        super().__init__(message)


class SceneGenerationError(GatewayException):
    """Raised when the upstream generation call fails or returns garbage.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, message: str = "Scene generation failed"):
        super().__init__(message)


class ConfigurationError(GatewayException):
    """Raised at startup when the configuration cannot be used."""
    status_code = 500
