from __future__ import annotations

from typing import Optional


class DeployError(Exception):
    """Base class for failures that abort a deployment run."""

    kind = "DeployError"


class MissingConfiguration(DeployError):
    """Raised when a required setting is empty."""

    kind = "MissingConfiguration"

    def __init__(self, field: str, envvar: Optional[str] = None) -> None:
        self.field = field
        self.envvar = envvar
        message = f"{field} is not defined"
        if envvar:
            message = f"{message} (set {envvar})"
        super().__init__(message)


class TemplateIOError(DeployError):
    kind = "IOError"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"cannot read template {path}: {reason}")


class TemplateError(DeployError):
    kind = "TemplateError"

    def __init__(self, message: str, identifier: Optional[str] = None) -> None:
        self.identifier = identifier
        super().__init__(message)


class FormatError(DeployError):
    """Raised when rendered text is not a single well-formed YAML mapping."""

    kind = "FormatError"


class SchemaError(DeployError):
    """Raised when a manifest tree does not describe a supported workload."""

    kind = "SchemaError"


class WorkloadLookupError(DeployError):
    kind = "LookupError"


class ApplyError(DeployError):
    kind = "ApplyError"


class SessionError(DeployError):
    """Raised when a cluster session cannot be built from the credentials."""

    kind = "SessionError"


__all__ = [
    "ApplyError",
    "DeployError",
    "FormatError",
    "MissingConfiguration",
    "SchemaError",
    "SessionError",
    "TemplateError",
    "TemplateIOError",
    "WorkloadLookupError",
]
