"""
Error taxonomy for tierup.

Fatal errors (halt the pipeline immediately):
- PreconditionUnmet: a predecessor stage was skipped and its effects are not in place
- ResourceApplyFailure: an external tool failed to create/update a resource
- ReadinessTimeout: a service endpoint never accepted connections within budget

Non-fatal:
- VerificationWarning: post-deploy check found a discrepancy (logged, never raised)

Operator errors (exit code 2, raised before any stage runs):
- ConfigError, SelectorError
"""

from __future__ import annotations

from typing import Optional, Sequence


class DeployError(Exception):
    """Base class for every error that fails a stage."""


class PreconditionUnmet(DeployError):
    def __init__(self, stage: str, predecessor: str, detail: str = "") -> None:
        self.stage = stage
        self.predecessor = predecessor
        self.detail = detail
        message = f"precondition unmet for '{stage}': predecessor '{predecessor}' "
        message += detail or "was skipped and is not applied"
        super().__init__(message)


class ResourceApplyFailure(DeployError):
    """
    An external tool reported an error.

    ``message`` carries the tool's stderr unmodified.
    """

    def __init__(self, resource: str, message: str, command: Optional[Sequence[str]] = None) -> None:
        self.resource = resource
        self.message = message
        self.command = list(command) if command else None
        super().__init__(f"{resource}: {message}")


class SecretResolutionError(ResourceApplyFailure):
    def __init__(self, directive: str, message: str) -> None:
        super().__init__(f"secret {directive}", message)


class ReadinessTimeout(DeployError):
    def __init__(self, endpoint: str, timeout: float, attempts: int = 0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"{endpoint} did not accept connections within {timeout:g}s ({attempts} attempts)"
        )


class VerificationWarning(Exception):
    """A post-deploy discrepancy. Collected into a report, never raised to the caller."""

    def __init__(self, check: str, message: str) -> None:
        self.check = check
        self.message = message
        super().__init__(f"{check}: {message}")


class ConfigError(ValueError):
    pass


class SelectorError(ValueError):
    pass
