"""Library for common command line flags."""

from argparse import (
    Action,
    ArgumentError,
    ArgumentParser,
    ArgumentTypeError,
    BooleanOptionalAction,
    Namespace,
)
from datetime import timedelta
import logging
import re
from typing import Any

from gke_deploy.application import ApplicationLink
from gke_deploy.config import (
    DEFAULT_OUTPUT,
    DEFAULT_WAIT_TIMEOUT,
    DeployRequest,
    PrepareOptions,
)
from gke_deploy.exceptions import format_duration

_LOGGER = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
EXPANDED_DIR = "expanded"
SUGGESTED_DIR = "suggested"

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class KeyValueAppendAction(Action):
    """Append comma separated key=value pairs to the argument dict."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        values = values.split(",")
        if not values[0]:
            return
        result = getattr(namespace, self.dest) or {}
        for value in values:
            if "=" not in value:
                raise ArgumentError(self, f"Expected key=value format but got '{value}'")
            k, v = value.split("=", 1)
            result[k] = v
        setattr(namespace, self.dest, result)


class LinkAppendAction(Action):
    """Append comma separated description=url Application links."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        result = getattr(namespace, self.dest) or []
        for value in values.split(","):
            if not value:
                continue
            try:
                result.append(ApplicationLink.from_str(value))
            except ValueError as err:
                raise ArgumentError(self, str(err))
        setattr(namespace, self.dest, result)


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as `5m`, `1m30s` or `90s`."""
    if value == "0":
        return timedelta()
    pos = 0
    seconds = 0.0
    for match in _DURATION_RE.finditer(value):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if not value or pos != len(value):
        raise ArgumentTypeError(f"invalid duration '{value}', expected e.g. 5m or 1m30s")
    return timedelta(seconds=seconds)


def add_config_flags(args: ArgumentParser, required: bool = False) -> None:
    """Add flags locating the configuration files."""
    args.add_argument(
        "--filename",
        "-f",
        type=str,
        default="",
        required=required,
        help="Configuration file, directory or gs:// location of the kubernetes configs",
    )
    args.add_argument(
        "--recursive",
        "-R",
        default=False,
        action=BooleanOptionalAction,
        help="Read configuration files in nested directories",
    )


def add_namespace_flag(args: ArgumentParser, default: str) -> None:
    args.add_argument(
        "--namespace",
        "-n",
        type=str,
        default=default,
        help="Namespace of the deployed objects, empty to leave it unset",
    )


def add_prepare_flags(args: ArgumentParser) -> None:
    """Add flags for preparing the deployment artifacts."""
    args.add_argument("--image", "-i", type=str, help="Image to pin to a digest")
    args.add_argument(
        "--app", "-a", dest="app_name", type=str, default="", help="Application name"
    )
    args.add_argument(
        "--version",
        "-v",
        dest="app_version",
        type=str,
        default="",
        help="Application version",
    )
    args.add_argument(
        "--output",
        "-o",
        type=str,
        default=DEFAULT_OUTPUT,
        help="Directory or gs:// location for the expanded and suggested artifacts",
    )
    args.add_argument(
        "--label",
        "-L",
        dest="labels",
        action=KeyValueAppendAction,
        help="Custom labels as key=value, may be comma separated or repeated",
    )
    args.add_argument(
        "--annotation",
        "-A",
        dest="annotations",
        action=KeyValueAppendAction,
        help="Custom annotations as key=value, may be comma separated or repeated",
    )
    args.add_argument(
        "--expose",
        "-x",
        dest="expose_port",
        type=int,
        default=0,
        help="Expose the application with a LoadBalancer Service on this port",
    )
    args.add_argument(
        "--create-application-cr",
        default=False,
        action=BooleanOptionalAction,
        help="Create an Application resource that aggregates the deployed objects",
    )
    args.add_argument(
        "--links",
        dest="application_links",
        action=LinkAppendAction,
        help="Application links as description=url, may be comma separated or repeated",
    )


def add_apply_flags(args: ArgumentParser) -> None:
    """Add flags for applying to a cluster."""
    args.add_argument("--cluster", "-c", type=str, default="", help="GKE cluster name")
    args.add_argument(
        "--location", "-l", type=str, default="", help="GKE cluster zone or region"
    )
    args.add_argument(
        "--project", "-p", type=str, default="", help="GKE cluster project"
    )
    args.add_argument(
        "--timeout",
        "-t",
        type=parse_duration,
        default=DEFAULT_WAIT_TIMEOUT,
        help=f"Time to wait for objects to be ready (default {format_duration(DEFAULT_WAIT_TIMEOUT)})",
    )


def output_dirs(output: str) -> tuple[str, str]:
    """Return the expanded and suggested output directories under the root."""
    root = output.rstrip("/")
    return f"{root}/{EXPANDED_DIR}", f"{root}/{SUGGESTED_DIR}"


def build_prepare_options(  # type: ignore[no-untyped-def]
    **kwargs,
) -> PrepareOptions:
    """Build PrepareOptions from the flags."""
    expanded, suggested = output_dirs(kwargs["output"])
    return PrepareOptions(
        config=kwargs["filename"],
        expanded_output=expanded,
        suggested_output=suggested,
        image=kwargs.get("image"),
        app_name=kwargs.get("app_name") or "",
        app_version=kwargs.get("app_version") or "",
        namespace=kwargs.get("namespace") or "",
        labels=kwargs.get("labels") or {},
        annotations=kwargs.get("annotations") or {},
        expose_port=kwargs.get("expose_port") or 0,
        recursive=kwargs.get("recursive", False),
        create_application_cr=kwargs.get("create_application_cr", False),
        application_links=kwargs.get("application_links") or [],
    )


def build_deploy_request(  # type: ignore[no-untyped-def]
    config: str, **kwargs
) -> DeployRequest:
    """Build a DeployRequest from the flags."""
    return DeployRequest(
        config=config,
        cluster_name=kwargs.get("cluster") or "",
        cluster_location=kwargs.get("location") or "",
        cluster_project=kwargs.get("project") or "",
        namespace=kwargs.get("namespace") or "",
        wait_timeout=kwargs.get("timeout", DEFAULT_WAIT_TIMEOUT),
        recursive=kwargs.get("recursive", False),
    )
