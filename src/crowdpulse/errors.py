"""Error taxonomy shared by services and HTTP handlers."""


class CrowdPulseError(Exception):
    """Base error. Subclasses pin the HTTP status they map to."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


class ValidationError(CrowdPulseError):
    status_code = 400


class AuthError(CrowdPulseError):
    status_code = 401


class NotFoundError(CrowdPulseError):
    status_code = 404


class MethodNotAllowed(CrowdPulseError):
    status_code = 405


class ConflictError(CrowdPulseError):
    status_code = 409


class InternalError(CrowdPulseError):
    """Unexpected store or runtime failure; ``details`` is for operators only."""

    status_code = 500

    def __init__(self, details: str, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.details = details

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "details": self.details}
