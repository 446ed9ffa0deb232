"""Best practice suggestions rendered into the suggested output artifact.

Suggestions are advisory only. They are rendered as YAML comments in front of
each document so the suggested artifact stays a valid manifest that matches the
expanded artifact object for object.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging

from .image import ImageReference
from .resource import DEPLOYMENT_KIND, Resource

__all__ = [
    "SuggestionRule",
    "RULES",
    "RULESET_VERSION",
    "suggestions",
    "render",
]

_LOGGER = logging.getLogger(__name__)

RULESET_VERSION = "v1"
HEADER = f"# Suggestions generated by gke-deploy rule set {RULESET_VERSION}\n"
COMMENT_PREFIX = "# Suggestion: "

# Kinds that run pods from a template.
WORKLOAD_KINDS = [
    "Deployment",
    "StatefulSet",
    "DaemonSet",
    "ReplicaSet",
    "Job",
    "CronJob",
    "Pod",
]


@dataclass
class SuggestionRule:
    """A check that produces advisory messages for a resource."""

    name: str
    """Short identifier of the rule."""

    check: Callable[[Resource], list[str]]
    """Returns the suggestions for the resource."""

    kinds: list[str] = field(default_factory=lambda: list(WORKLOAD_KINDS))
    """Kinds the rule applies to."""

    def evaluate(self, res: Resource) -> list[str]:
        if res.kind not in self.kinds:
            return []
        return self.check(res)


def _container_check(
    predicate: Callable[[dict], bool], message: str
) -> Callable[[Resource], list[str]]:
    def check(res: Resource) -> list[str]:
        return [
            message.format(container=container.get("name", "<unnamed>"))
            for container in res.containers()
            if not predicate(container)
        ]

    return check


def _has_resource_field(field_name: str) -> Callable[[dict], bool]:
    def predicate(container: dict) -> bool:
        return bool((container.get("resources") or {}).get(field_name))

    return predicate


def _pinned_images(res: Resource) -> list[str]:
    result = []
    for image in res.images():
        if not ImageReference.parse(image).digest:
            result.append(f"pin image {image} to a digest")
    return result


def _single_replica(res: Resource) -> list[str]:
    if ((res.doc.get("spec") or {}).get("replicas") or 1) < 2:
        return ["run at least 2 replicas to tolerate node disruptions"]
    return []


RULES: list[SuggestionRule] = [
    SuggestionRule(
        name="resource-requests",
        check=_container_check(
            _has_resource_field("requests"),
            "set resources.requests for container {container}",
        ),
    ),
    SuggestionRule(
        name="resource-limits",
        check=_container_check(
            _has_resource_field("limits"),
            "set resources.limits for container {container}",
        ),
    ),
    SuggestionRule(
        name="readiness-probe",
        check=_container_check(
            lambda container: "readinessProbe" in container,
            "add a readinessProbe to container {container}",
        ),
    ),
    SuggestionRule(
        name="liveness-probe",
        check=_container_check(
            lambda container: "livenessProbe" in container,
            "add a livenessProbe to container {container}",
        ),
    ),
    SuggestionRule(name="image-digest", check=_pinned_images),
    SuggestionRule(
        name="replicas", check=_single_replica, kinds=[DEPLOYMENT_KIND]
    ),
]


def suggestions(res: Resource, rules: list[SuggestionRule] | None = None) -> list[str]:
    """Return the suggestions for the resource, in rule order."""
    result: list[str] = []
    for rule in rules if rules is not None else RULES:
        result.extend(rule.evaluate(res))
    return result


def render(resources: list[Resource], rules: list[SuggestionRule] | None = None) -> str:
    """Render the resources as a multi-document string annotated with suggestions."""
    out = [HEADER]
    for res in resources:
        out.append("---\n")
        for suggestion in suggestions(res, rules):
            out.append(f"{COMMENT_PREFIX}{suggestion}\n")
        out.append(res.yaml())
    _LOGGER.debug("Rendered suggestions for %d objects", len(resources))
    return "".join(out)
