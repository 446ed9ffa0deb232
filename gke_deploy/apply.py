"""Applies configuration files to a cluster and waits for them to be ready.

Objects are applied in two phases. Namespaces are applied first, one at a time,
and each is waited on before moving on so that the objects inside them can be
created. The remaining objects are then applied in the order they were read and
polled concurrently until every one of them is ready or the wait timeout, which
is measured from the start of the apply, expires.

Example usage:
```python
from datetime import timedelta

from gke_deploy import apply
from gke_deploy.config import DeployRequest

await apply.apply(
    DeployRequest(
        config="output/expanded",
        cluster_name="my-cluster",
        cluster_location="us-central1",
        wait_timeout=timedelta(minutes=5),
    )
)
```
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from . import readiness
from .cluster import ClusterClient
from .config import Clients, DeployRequest, WaitOptions
from .exceptions import (
    ApplyFailedError,
    ClusterException,
    CredentialsException,
    GkeDeployException,
    InvalidClusterIdentityError,
    WaitTimeoutError,
)
from .resource import (
    NAMESPACE_KIND,
    NamedResource,
    Resource,
    check_unique,
    parse_documents,
)

__all__ = [
    "apply",
    "apply_resources",
    "ReadinessRecord",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ReadinessRecord:
    """Readiness state of an object while waiting on it."""

    resource_id: NamedResource
    """The object being waited on."""

    status: dict[str, Any] | None = None
    """The last observed state of the object, None if not found."""

    ready: bool = False
    """True once the object has been observed ready."""

    ready_at: datetime | None = None
    """When the object was first observed ready."""

    def observe(self, obj: dict[str, Any] | None) -> bool:
        """Record the latest state of the object, returning True if ready."""
        self.status = obj
        if not self.ready and readiness.is_ready(self.resource_id.kind, obj):
            self.ready = True
            self.ready_at = datetime.now(timezone.utc)
        return self.ready


async def _apply_one(cluster: ClusterClient, res: Resource) -> None:
    try:
        await cluster.apply(res.yaml().encode("utf-8"))
    except GkeDeployException as err:
        raise ApplyFailedError(
            res.kind, res.name, f"failed to apply config from string: {err}"
        ) from err
    _LOGGER.info("Applied %s", res.resource_id)


async def _poll(
    cluster: ClusterClient, record: ReadinessRecord, interval: timedelta
) -> None:
    """Poll the object until it is ready."""
    resource_id = record.resource_id
    while True:
        try:
            obj = await cluster.get(
                resource_id.kind, resource_id.namespace, resource_id.name
            )
        except GkeDeployException as err:
            raise ClusterException(
                f"failed to get {resource_id.kind} with name \"{resource_id.name}\" from cluster: {err}"
            ) from err
        if record.observe(obj):
            _LOGGER.info("%s is ready", resource_id)
            return
        _LOGGER.debug("%s is not ready yet", resource_id)
        await asyncio.sleep(interval.total_seconds())


async def _wait(
    cluster: ClusterClient,
    resources: list[Resource],
    deadline: float,
    timeout: timedelta,
    options: WaitOptions,
) -> list[ReadinessRecord]:
    """Wait for all resources to be ready before the loop time deadline."""
    records = [ReadinessRecord(res.resource_id) for res in resources]
    tasks = [
        asyncio.create_task(
            _poll(cluster, record, options.poll_interval),
            name=f"wait-{record.resource_id}",
        )
        for record in records
    ]
    try:
        async with asyncio.timeout_at(deadline):
            await asyncio.gather(*tasks)
    except TimeoutError as err:
        pending = [str(record.resource_id) for record in records if not record.ready]
        if not pending:
            return records
        _LOGGER.warning("Objects not ready before timeout: %s", ", ".join(pending))
        raise WaitTimeoutError(timeout, pending) from err
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    return records


async def apply_resources(
    cluster: ClusterClient,
    resources: list[Resource],
    wait_timeout: timedelta,
    options: WaitOptions | None = None,
    start: float | None = None,
) -> list[ReadinessRecord]:
    """Apply the resources to the cluster and wait for them to be ready.

    The wait deadline is `start` (the loop time, defaulting to now) plus the
    wait timeout. Each namespace is separately given the full wait timeout.
    """
    options = options or WaitOptions()
    loop = asyncio.get_running_loop()
    if start is None:
        start = loop.time()
    timeout_seconds = wait_timeout.total_seconds()

    records: list[ReadinessRecord] = []
    namespaces = [res for res in resources if res.kind == NAMESPACE_KIND]
    for res in namespaces:
        await _apply_one(cluster, res)
        records.extend(
            await _wait(
                cluster, [res], loop.time() + timeout_seconds, wait_timeout, options
            )
        )

    others = [res for res in resources if res.kind != NAMESPACE_KIND]
    for res in others:
        await _apply_one(cluster, res)

    _LOGGER.info("Waiting for %d objects to be ready", len(others))
    records.extend(
        await _wait(cluster, others, start + timeout_seconds, wait_timeout, options)
    )
    _LOGGER.info("All %d objects are ready", len(records))
    return records


async def apply(
    request: DeployRequest,
    clients: Clients | None = None,
    options: WaitOptions | None = None,
) -> list[ReadinessRecord]:
    """Apply the configuration files of the request to the cluster.

    Returns the readiness records of every applied object once all of them are
    ready.
    """
    clients = clients or Clients()
    start = asyncio.get_running_loop().time()
    if bool(request.cluster_name) != bool(request.cluster_location):
        raise InvalidClusterIdentityError(
            "clusterName and clusterLocation either must both be provided, or neither should be provided"
        )

    if request.cluster_name:
        try:
            await clients.credentials.bind(
                request.cluster_name,
                request.cluster_location,
                request.cluster_project or None,
            )
        except GkeDeployException as err:
            raise CredentialsException(
                f"failed to get credentials for cluster {request.cluster_name}: {err}"
            ) from err

    files = await clients.resolver.read(request.config, request.recursive)
    resources = parse_documents(files)
    if request.namespace:
        for res in resources:
            res.set_namespace(request.namespace)
        check_unique(resources)

    return await apply_resources(
        clients.cluster, resources, request.wait_timeout, options, start=start
    )
