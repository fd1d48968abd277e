"""Custom exception hierarchy for pipebench."""


class PipebenchError(Exception):
    """Base exception for all pipebench errors."""

    pass


class ConfigurationError(PipebenchError):
    """Fatal configuration error detected before any work executes.

    Attributes:
        message: Error message describing what went wrong
        remediation: Optional guidance on how to fix the issue
    """

    def __init__(self, message: str, remediation: str | None = None):
        """Initialize configuration error.

        Args:
            message: Error message
            remediation: Optional remediation guidance
        """
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        """Return formatted error message with remediation if available."""
        if self.remediation:
            return f"{self.args[0]}\n\nRemediation: {self.remediation}"
        return str(self.args[0])


class UnknownDependencyError(ConfigurationError):
    """A stage declares a dependency on a stage name that was never declared.

    Attributes:
        stage: Name of the stage declaring the dependency
        dependency: The undeclared dependency name
    """

    def __init__(self, stage: str, dependency: str):
        """Initialize unknown dependency error.

        Args:
            stage: Stage declaring the dependency
            dependency: Unknown dependency name
        """
        super().__init__(
            f"Unknown dependency '{dependency}' for stage '{stage}'",
            remediation="Declare the dependency as a stage or remove it from 'dependencies'",
        )
        self.stage = stage
        self.dependency = dependency


class CircularDependencyError(ConfigurationError):
    """Raised when the stage dependency graph contains a cycle.

    Attributes:
        cycles: Each detected cycle as a list of stage names (first == last)
    """

    def __init__(self, cycles: list[list[str]]):
        """Initialize circular dependency error.

        Args:
            cycles: Detected cycles
        """
        cycle_lines = "\n".join(f"  - {' -> '.join(cycle)}" for cycle in cycles)
        super().__init__(f"Circular dependency detected. Cycles found:\n{cycle_lines}")
        self.cycles = cycles


class SchedulingDeadlockError(PipebenchError):
    """A dependency wave produced no ready stages while stages remain unexecuted."""

    def __init__(self, pending: list[str]):
        """Initialize deadlock error.

        Args:
            pending: Names of stages that could never become ready
        """
        super().__init__(
            f"Scheduling deadlock: no stage became ready, {len(pending)} pending: "
            f"{', '.join(sorted(pending))}"
        )
        self.pending = pending


class UnsupportedFormatError(PipebenchError, ValueError):
    """Requested report or export format is not supported."""

    def __init__(self, fmt: str, supported: tuple[str, ...]):
        """Initialize unsupported format error.

        Args:
            fmt: The requested format
            supported: Formats that are supported
        """
        super().__init__(f"Unsupported format: {fmt} (expected one of: {', '.join(supported)})")
        self.format = fmt
        self.supported = supported
