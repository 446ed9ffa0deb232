"""Exceptions related to gke-deploy."""

from datetime import timedelta

__all__ = [
    "GkeDeployException",
    "InputException",
    "NoManifestsError",
    "ParseError",
    "ReservedKeyError",
    "InvalidClusterIdentityError",
    "SourceUnavailableError",
    "DestinationConflictError",
    "ImageResolutionError",
    "ApplyFailedError",
    "WaitTimeoutError",
    "CommandException",
]


class GkeDeployException(Exception):
    """Generic base exception used for this library."""


class InputException(GkeDeployException):
    """Raised when the input files or values are not formatted as expected."""


class NoManifestsError(InputException):
    """Raised when a configuration source contains no manifest files."""


class ParseError(InputException):
    """Raised when a manifest cannot be parsed into a resource."""


class ReservedKeyError(InputException):
    """Raised when a custom label tries to override a label owned by gke-deploy."""


class InvalidClusterIdentityError(InputException):
    """Raised when only one of the cluster name and location is provided."""


class SourceUnavailableError(GkeDeployException):
    """Raised when configuration files could not be fetched."""


class DestinationConflictError(GkeDeployException):
    """Raised when an output destination exists as a regular file."""


class ImageResolutionError(GkeDeployException):
    """Raised when the digest of a container image could not be resolved."""


class ApplyFailedError(GkeDeployException):
    """Raised when a resource could not be applied to the cluster."""

    def __init__(self, kind: str, name: str, message: str) -> None:
        super().__init__(
            f'failed to apply {kind} configuration file with name "{name}" to cluster: {message}'
        )
        self.kind = kind
        self.name = name


class WaitTimeoutError(GkeDeployException):
    """Raised when deployed objects did not become ready before the deadline."""

    def __init__(self, timeout: timedelta, pending: list[str] | None = None) -> None:
        super().__init__(
            f"timed out after {format_duration(timeout)} while waiting for deployed objects to be ready"
        )
        self.timeout = timeout
        self.pending = pending or []


class CommandException(GkeDeployException):
    """Raised when there is a failure running a subcommand."""


class ClusterException(CommandException):
    """Raised when there is a failure running a kubectl command."""


class CredentialsException(CommandException):
    """Raised when there is a failure fetching cluster credentials."""


class RegistryException(CommandException):
    """Raised when there is a failure querying a container registry."""


class StorageException(CommandException):
    """Raised when there is a failure copying from or to object storage."""


def format_duration(value: timedelta) -> str:
    """Format a duration the way kubectl and gcloud print them, e.g. `1m30s`."""
    total = value.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    if total < 1:
        millis = f"{total * 1000:.6f}".rstrip("0").rstrip(".")
        return f"{sign}{millis}ms"
    hours, rem = divmod(int(total), 3600)
    minutes, _ = divmod(rem, 60)
    seconds = total - hours * 3600 - minutes * 60
    seconds_str = f"{seconds:.9f}".rstrip("0").rstrip(".")
    out = ""
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return f"{sign}{out}{seconds_str}s"
