"""Exceptions for the governance pipeline.

Governance outcomes (blocked, held) are never raised: they come back as
ordinary return values so host code can respect them without exception
handling. The exceptions here signal programming or configuration faults
that must reach the caller.
"""

from typing import Optional


class GovernanceError(Exception):
    """Base exception for all governance pipeline errors."""

    pass


class ToolConfigurationError(GovernanceError):
    """Raised when a wrapped tool cannot be executed at all.

    This happens when the tool handed to ``governed_tool`` exposes no
    callable ``execute``. It is a caller-configuration bug and is raised
    before any governance evaluation takes place.

    Attributes:
        tool_name: Sanitized name of the offending tool
    """

    def __init__(self, message: str, tool_name: Optional[str] = None) -> None:
        self.tool_name = tool_name
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize the error for logging."""
        return {
            "error_type": "ToolConfigurationError",
            "message": str(self),
            "tool_name": self.tool_name,
        }


class GovernanceConfigurationError(GovernanceError):
    """Raised when guard or engine configuration is invalid.

    This can happen when:
    - ``drift_threshold`` is outside [0, 1]
    - ``mode`` is not one of strict, standard, flexible, permissive
    - A configuration mapping carries values of the wrong type

    Attributes:
        cause: The underlying validation error, if any
    """

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        self.cause = cause
        super().__init__(message)


class HoldNotFoundError(GovernanceError):
    """Raised when resolving a hold the engine does not know about."""

    def __init__(self, hold_id: str) -> None:
        self.hold_id = hold_id
        super().__init__(f"Hold '{hold_id}' is not pending")
