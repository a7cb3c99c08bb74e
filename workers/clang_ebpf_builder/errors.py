"""
Error kinds raised by the builder.

Two classes of failure:
  - SetupError: a command could not be run at all, a required file could
    not be read or written, or the configuration is incomplete.
  - CompileError: a toolchain stage ran and produced diagnostic output.
"""
from typing import Sequence


class EbpfBuildError(Exception):
    """Base class for every builder failure."""

    kind = "BUILD_ERROR"


class SetupError(EbpfBuildError):
    """Fatal setup failure: the build cannot proceed."""

    kind = "SETUP_ERROR"


class DiscoveryCommandUnavailable(SetupError):
    """A host discovery command (uname, clang, gcc) could not be executed."""

    kind = "DISCOVERY_COMMAND_UNAVAILABLE"

    def __init__(self, command: Sequence[str], reason: str):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"failed to execute {' '.join(self.command)}: {reason}")


class ToolInvocationError(SetupError):
    """A toolchain stage binary (clang, llc) could not be executed."""

    kind = "TOOL_INVOCATION_FAILED"

    def __init__(self, command: Sequence[str], reason: str):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"failed to execute {self.command[0]}: {reason}")


class ArtifactIOError(SetupError):
    """The compiled object or the generated artifact could not be read/written."""

    kind = "ARTIFACT_IO_ERROR"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"can't access {path}: {reason}")


class ConfigurationError(SetupError):
    """A required setting is missing."""

    kind = "CONFIGURATION_ERROR"


class CompileError(EbpfBuildError):
    """
    A toolchain stage emitted diagnostics.

    ``payload`` is the classified output text, verbatim; ``str(err)``
    returns it unchanged so callers can print it as-is.
    """

    kind = "COMPILE_ERROR"

    def __init__(self, stage: str, payload: str):
        self.stage = stage
        self.payload = payload
        super().__init__(payload)

    def __str__(self) -> str:
        return self.payload
