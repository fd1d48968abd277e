"""Unit tests for the exception hierarchy."""

import pytest
from pipebench.infrastructure.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    PipebenchError,
    SchedulingDeadlockError,
    UnknownDependencyError,
    UnsupportedFormatError,
)


class TestConfigurationErrors:
    """Tests for configuration error types."""

    def test_remediation_is_appended(self) -> None:
        """Test remediation text is part of the message."""
        error = ConfigurationError("bad value", remediation="fix it")

        assert str(error) == "bad value\n\nRemediation: fix it"

    def test_message_without_remediation(self) -> None:
        """Test plain message when no remediation is given."""
        assert str(ConfigurationError("bad value")) == "bad value"

    def test_unknown_dependency_carries_names(self) -> None:
        """Test unknown dependency error exposes stage and dependency."""
        error = UnknownDependencyError("render", "parse")

        assert isinstance(error, ConfigurationError)
        assert error.stage == "render"
        assert error.dependency == "parse"
        assert "Unknown dependency 'parse' for stage 'render'" in str(error)

    def test_circular_dependency_lists_cycles(self) -> None:
        """Test every cycle path is rendered."""
        error = CircularDependencyError([["a", "b", "a"]])

        assert error.cycles == [["a", "b", "a"]]
        assert "a -> b -> a" in str(error)


class TestOtherErrors:
    """Tests for scheduling and format errors."""

    def test_deadlock_lists_pending_sorted(self) -> None:
        """Test pending stage names are reported sorted."""
        error = SchedulingDeadlockError(["c", "a"])

        assert isinstance(error, PipebenchError)
        assert error.pending == ["c", "a"]
        assert "a, c" in str(error)

    def test_unsupported_format_is_value_error(self) -> None:
        """Test unsupported format can be caught as ValueError."""
        with pytest.raises(ValueError, match="Unsupported format: xml"):
            raise UnsupportedFormatError("xml", ("json", "csv"))
