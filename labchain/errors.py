"""Exceptions raised by labchain components."""

from typing import Optional


class LabchainError(Exception):
    """Base class for every failure the CLI reports."""


class ConfigMissing(LabchainError):
    """A required file or directory does not exist."""

    def __init__(self, path, what: str = "configuration"):
        self.path = path
        super().__init__(f"{what} missing at {path}")


class DependencyMissing(LabchainError):
    """A required external tool is not installed or not reachable."""

    def __init__(self, tool: str, remediation: str = ""):
        self.tool = tool
        self.remediation = remediation
        message = f"missing required tool: {tool}"
        if remediation:
            message += f" ({remediation})"
        super().__init__(message)


class ValidationError(LabchainError):
    """Malformed address, key, number or record."""


class InvalidKey(ValidationError):
    pass


class ExternalToolFailure(LabchainError):
    """A delegated process or service answered with an error."""

    def __init__(self, tool: str, output: str = "", exit_code: Optional[int] = None):
        self.tool = tool
        self.output = output
        self.exit_code = exit_code
        message = f"{tool} failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"
        if output:
            message += f":\n{output}"
        super().__init__(message)


class ProvisionFailed(ExternalToolFailure):
    pass


class RpcUnavailable(ExternalToolFailure):
    pass


class DuplicateValidator(LabchainError):
    """Key material for a pubkey already exists; nothing was overwritten."""

    def __init__(self, pubkey: str, path):
        self.pubkey = pubkey
        self.path = path
        super().__init__(f"validator {pubkey} already exists at {path}")


class ReadinessTimeout(LabchainError):
    def __init__(self, role, timeout: float):
        self.role = role
        self.timeout = timeout
        super().__init__(f"{role} did not become ready within {timeout:g}s")


class OperatorAbort(LabchainError):
    """The operator declined to continue."""
