"""Readiness predicates for live kubernetes objects.

Each predicate takes the object as returned by the cluster (including its
`status`) and returns True once the object has converged. The table is keyed by
kind and may be extended by callers; kinds without an entry are ready as soon as
they exist in the cluster.
"""

from collections.abc import Callable
import logging
from typing import Any

__all__ = [
    "Predicate",
    "PREDICATES",
    "is_ready",
]

_LOGGER = logging.getLogger(__name__)

Predicate = Callable[[dict[str, Any]], bool]

# Service types that do not wait on an external load balancer.
INTERNAL_SERVICE_TYPES = {"ClusterIP", "NodePort", "ExternalName"}


def _status(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def _spec(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


def _observed_current(obj: dict[str, Any]) -> bool:
    """Return True once the controller has seen the latest generation."""
    generation = (obj.get("metadata") or {}).get("generation")
    if generation is None:
        return True
    return _status(obj).get("observedGeneration") == generation


def _condition(obj: dict[str, Any], cond_type: str) -> str | None:
    for condition in _status(obj).get("conditions") or []:
        if condition.get("type") == cond_type:
            return condition.get("status")
    return None


def namespace_ready(obj: dict[str, Any]) -> bool:
    return _status(obj).get("phase") == "Active"


def deployment_ready(obj: dict[str, Any]) -> bool:
    desired = _spec(obj).get("replicas", 1)
    return (
        _observed_current(obj)
        and _status(obj).get("readyReplicas", 0) == desired
    )


def stateful_set_ready(obj: dict[str, Any]) -> bool:
    desired = _spec(obj).get("replicas", 1)
    status = _status(obj)
    return (
        _observed_current(obj)
        and status.get("readyReplicas", 0) == desired
        and status.get("currentRevision") == status.get("updateRevision")
    )


def daemon_set_ready(obj: dict[str, Any]) -> bool:
    status = _status(obj)
    return (
        _observed_current(obj)
        and status.get("numberReady", 0) == status.get("desiredNumberScheduled", 0)
        and status.get("updatedNumberScheduled", 0)
        == status.get("desiredNumberScheduled", 0)
    )


def replica_set_ready(obj: dict[str, Any]) -> bool:
    desired = _spec(obj).get("replicas", 1)
    return _observed_current(obj) and _status(obj).get("readyReplicas", 0) == desired


def pod_ready(obj: dict[str, Any]) -> bool:
    phase = _status(obj).get("phase")
    if phase == "Succeeded":
        return True
    return phase == "Running" and _condition(obj, "Ready") == "True"


def job_ready(obj: dict[str, Any]) -> bool:
    return _condition(obj, "Complete") == "True"


def pvc_ready(obj: dict[str, Any]) -> bool:
    return _status(obj).get("phase") == "Bound"


def pdb_ready(obj: dict[str, Any]) -> bool:
    status = _status(obj)
    return _observed_current(obj) and status.get("currentHealthy", 0) >= status.get(
        "desiredHealthy", 0
    )


def service_ready(obj: dict[str, Any]) -> bool:
    service_type = _spec(obj).get("type", "ClusterIP")
    if service_type in INTERNAL_SERVICE_TYPES:
        return True
    ingress = (_status(obj).get("loadBalancer") or {}).get("ingress") or []
    return any(entry.get("ip") or entry.get("hostname") for entry in ingress)


def always_ready(obj: dict[str, Any]) -> bool:
    return True


PREDICATES: dict[str, Predicate] = {
    "Namespace": namespace_ready,
    "Deployment": deployment_ready,
    "StatefulSet": stateful_set_ready,
    "DaemonSet": daemon_set_ready,
    "ReplicaSet": replica_set_ready,
    "Pod": pod_ready,
    "Job": job_ready,
    "PersistentVolumeClaim": pvc_ready,
    "PodDisruptionBudget": pdb_ready,
    "HorizontalPodAutoscaler": always_ready,
    "Service": service_ready,
    "Application": always_ready,
}


def is_ready(kind: str, obj: dict[str, Any] | None) -> bool:
    """Return True if the live object is ready according to its kind."""
    if obj is None:
        return False
    predicate = PREDICATES.get(kind, always_ready)
    return predicate(obj)
