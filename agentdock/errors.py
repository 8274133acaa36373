class AgentDockError(Exception):
    """Base for errors surfaced to API callers."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(AgentDockError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(AgentDockError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"


class NotFoundError(AgentDockError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found")


class ConflictError(AgentDockError):
    status_code = 409
    code = "CONFLICT"


class AlreadyProcessingError(AgentDockError):
    status_code = 409
    code = "ALREADY_PROCESSING"

    def __init__(self, message: str = "Already processing a prompt"):
        super().__init__(message)


class RunnerError(AgentDockError):
    """Agent execution failed; message carries the provider's raw error text."""

    code = "EXECUTION_FAILED"


class ResumptionTimeoutError(RunnerError):
    code = "RESUMPTION_TIMEOUT"
