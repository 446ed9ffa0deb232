"""Clients for talking to a live kubernetes cluster.

The `ClusterClient` applies manifests and reads back the current state of
objects, and the `CredentialProvisioner` points the cluster client at a GKE
cluster. The production implementations shell out to `kubectl` and `gcloud`.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any

import yaml

from . import command
from .exceptions import ClusterException, CredentialsException

__all__ = [
    "ClusterClient",
    "CredentialProvisioner",
    "Kubectl",
    "Gcloud",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = command.binary("KUBECTL_BIN", "kubectl")
GCLOUD_BIN = command.binary("GCLOUD_BIN", "gcloud")

_KUBECTL_TIMEOUT = 120.0


class ClusterClient(ABC):
    """Applies manifests to a cluster and fetches their live state."""

    @abstractmethod
    async def apply(self, manifest: bytes) -> None:
        """Apply a single manifest document to the cluster."""

    @abstractmethod
    async def get(
        self, kind: str, namespace: str | None, name: str
    ) -> dict[str, Any] | None:
        """Return the live object, or None if it does not exist yet."""


class CredentialProvisioner(ABC):
    """Binds subsequent cluster client calls to a specific cluster."""

    @abstractmethod
    async def bind(self, name: str, location: str, project: str | None) -> None:
        """Fetch credentials for the cluster."""


class Kubectl(ClusterClient):
    """Cluster client backed by the kubectl command line tool."""

    def __init__(self, kubectl_bin: str = KUBECTL_BIN) -> None:
        self._kubectl_bin = kubectl_bin

    async def apply(self, manifest: bytes) -> None:
        await command.run(
            command.Command(
                [self._kubectl_bin, "apply", "-f", "-"],
                exc=ClusterException,
                timeout=_KUBECTL_TIMEOUT,
            ),
            stdin=manifest,
        )

    async def get(
        self, kind: str, namespace: str | None, name: str
    ) -> dict[str, Any] | None:
        args = [self._kubectl_bin, "get", kind, name, "--ignore-not-found", "-o", "yaml"]
        if namespace:
            args.extend(["--namespace", namespace])
        out = await command.run(
            command.Command(args, exc=ClusterException, timeout=_KUBECTL_TIMEOUT)
        )
        if not out.strip():
            return None
        try:
            return yaml.safe_load(out)
        except yaml.YAMLError as err:
            raise ClusterException(
                f"Unable to parse kubectl output for {kind} {name}: {err}"
            ) from err


def _location_flag(location: str) -> str:
    """Return the gcloud flag for a zone (`us-east1-b`) or region (`us-east1`)."""
    if len(location.split("-")) >= 3:
        return "--zone"
    return "--region"


class Gcloud(CredentialProvisioner):
    """Fetches GKE cluster credentials into the kubeconfig with gcloud."""

    def __init__(self, gcloud_bin: str = GCLOUD_BIN) -> None:
        self._gcloud_bin = gcloud_bin

    async def bind(self, name: str, location: str, project: str | None) -> None:
        args = [
            self._gcloud_bin,
            "container",
            "clusters",
            "get-credentials",
            name,
            _location_flag(location),
            location,
        ]
        if project:
            args.extend(["--project", project])
        await command.run(command.Command(args, exc=CredentialsException))
        _LOGGER.info("Fetched credentials for cluster %s in %s", name, location)
