"""Custom exceptions for the Agent Scheduler backend"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SchedulerError(Exception):
    """
    Base class for all scheduling and execution errors.

    Carries a machine-readable error type, the schedule it relates to (if
    any) and free-form details for logging.
    """

    error_type = "scheduler_error"

    def __init__(
        self,
        message: str,
        schedule_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize SchedulerError.

        Args:
            message: Human-readable error message
            schedule_id: ID of the schedule involved (if available)
            details: Additional error details for debugging
        """
        self.message = message
        self.schedule_id = schedule_id
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dictionary representation of the error
        """
        return {
            "error_type": self.error_type,
            "message": self.message,
            "schedule_id": self.schedule_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }

    def get_api_response(self) -> Dict[str, Any]:
        """
        Get API-friendly error response.

        Returns:
            Dictionary suitable for HTTP error responses
        """
        return {
            "detail": self.message,
            "type": self.error_type,
            "schedule_id": self.schedule_id
        }


class ScheduleValidationError(SchedulerError):
    """
    Raised when a schedule definition is rejected before it is persisted.

    This exception is raised when:
    - The cron expression is not a valid 5-field expression
    - The timezone is not a known IANA timezone
    - The cron expression fires more often than the agent allows
    - The agent does not support scheduling
    """

    error_type = "schedule_validation_error"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        invalid_value: Any = None,
        schedule_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.field = field
        self.invalid_value = invalid_value
        super().__init__(message, schedule_id=schedule_id, details=details)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["field"] = self.field
        result["invalid_value"] = self.invalid_value
        return result

    def get_api_response(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "type": self.error_type,
            "field": self.field,
            "invalid_value": self.invalid_value
        }


class ScheduleNotFoundError(SchedulerError):
    """Raised when a schedule ID does not exist in the store"""

    error_type = "schedule_not_found"

    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule {schedule_id} not found", schedule_id=schedule_id)


class AgentResolutionError(SchedulerError):
    """
    Raised when an agent reference cannot be turned into a runnable unit.

    This exception is raised when:
    - The agent kind has no registered resolver
    - The agent ID does not exist (missing plugin or flow file)
    - The plugin manifest or handler is invalid

    It signals a configuration problem rather than a transient failure, so
    it is never retried automatically.
    """

    error_type = "agent_resolution_error"

    def __init__(
        self,
        message: str,
        agent_id: Optional[str] = None,
        agent_type: Optional[str] = None,
        schedule_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.agent_id = agent_id
        self.agent_type = agent_type
        super().__init__(message, schedule_id=schedule_id, details=details)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["agent_id"] = self.agent_id
        result["agent_type"] = self.agent_type
        return result

    def get_api_response(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "type": self.error_type,
            "agent_id": self.agent_id,
            "agent_type": self.agent_type
        }


class AgentExecutionError(SchedulerError):
    """
    Raised when an agent's run fails.

    Recorded on the execution row; the schedule stays enabled unless the
    circuit breaker trips.
    """

    error_type = "agent_execution_error"

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.execution_id = execution_id
        super().__init__(message, schedule_id=schedule_id, details=details)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["execution_id"] = self.execution_id
        return result


class ExecutionTimeoutError(AgentExecutionError):
    """Raised when an agent run exceeds its deadline"""

    error_type = "execution_timeout"

    def __init__(
        self,
        timeout_seconds: float,
        execution_id: Optional[str] = None,
        schedule_id: Optional[str] = None
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Execution exceeded timeout of {timeout_seconds:g} seconds",
            execution_id=execution_id,
            schedule_id=schedule_id,
            details={"timeout_seconds": timeout_seconds}
        )


class ExecutionAlreadyRunningError(SchedulerError):
    """Raised when a schedule already owns a running execution"""

    error_type = "execution_already_running"

    def __init__(self, schedule_id: str, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        super().__init__(
            f"Schedule {schedule_id} already has a running execution",
            schedule_id=schedule_id,
            details={"execution_id": execution_id} if execution_id else None
        )
