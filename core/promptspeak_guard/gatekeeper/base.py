"""Decision engine protocol.

Defines the interface the interception pipeline consumes. The bundled
Gatekeeper implements it; any object with the same three operations can
be injected into the guards instead.
"""

from typing import Protocol, runtime_checkable

from promptspeak_guard.gatekeeper.config import ExecutionControlConfig
from promptspeak_guard.gatekeeper.types import ExecuteRequest, ExecuteResult


@runtime_checkable
class DecisionEngine(Protocol):
    """Protocol defining the decision engine interface.

    - execute: Synchronously decide a single tool call
    - set_execution_control_config: Replace the engine's policy
    - stop_periodic_cleanup: Release background resources

    Example:
        class AllowAll:
            def execute(self, request: ExecuteRequest) -> ExecuteResult:
                return ExecuteResult.allow()

            def set_execution_control_config(
                self, config: ExecutionControlConfig
            ) -> None:
                pass

            def stop_periodic_cleanup(self) -> None:
                pass
    """

    def execute(self, request: ExecuteRequest) -> ExecuteResult:
        """Decide whether a tool call may run.

        Args:
            request: The call to decide

        Returns:
            An ExecuteResult that is allowed, blocked or held
        """
        ...

    def set_execution_control_config(self, config: ExecutionControlConfig) -> None:
        """Replace the engine's execution-control policy."""
        ...

    def stop_periodic_cleanup(self) -> None:
        """Stop background cleanup. Safe to call more than once."""
        ...
