"""Lift Planner exceptions."""


class LiftPlanError(Exception):
    """Base exception for Lift Planner errors."""
    pass


class ConfigurationError(LiftPlanError):
    """Raised when the backend connection settings are missing."""
    pass


class AuthenticationError(LiftPlanError):
    """Raised when signing in, signing up or signing out fails."""
    pass


class APIError(LiftPlanError):
    """Raised when a gateway call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(APIError):
    """Raised when a single-row select matches nothing."""

    def __init__(self, message: str = "row not found"):
        super().__init__(message, status_code=404)


class PlanError(LiftPlanError):
    """Raised when the plan builder cannot commit its draft."""
    pass


class RunnerError(LiftPlanError):
    """Raised when the workout runner cannot finalize."""
    pass
