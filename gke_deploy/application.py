"""Builds the Application custom resource that aggregates a deployment.

The Application resource (`app.k8s.io/v1beta1`) selects every object deployed
under the same `app.kubernetes.io/name` label and lists their kinds, so the
application can be viewed as a whole in the cloud console.
"""

from dataclasses import dataclass
import logging
from typing import Any

from mashumaro import DataClassDictMixin

from .exceptions import InputException
from .resource import APPLICATION_KIND, NAME_LABEL, Resource

__all__ = [
    "ApplicationLink",
    "ComponentKind",
    "synthesize",
    "is_application",
]

_LOGGER = logging.getLogger(__name__)

APPLICATION_DOMAIN = "app.k8s.io"
APPLICATION_API_VERSION = f"{APPLICATION_DOMAIN}/v1beta1"
CORE_GROUP = "core"


@dataclass(frozen=True)
class ApplicationLink(DataClassDictMixin):
    """A link shown with the Application, e.g. a dashboard or runbook."""

    description: str
    """Human readable description of the link."""

    url: str
    """The address the link points to."""

    @classmethod
    def from_str(cls, value: str) -> "ApplicationLink":
        """Parse a link from a `description=url` string."""
        if "=" not in value:
            raise ValueError(f"Expected description=url format but got '{value}'")
        description, url = value.split("=", 1)
        if not url:
            raise ValueError(f"Link '{value}' is missing a url")
        return cls(description=description, url=url)


@dataclass(frozen=True)
class ComponentKind(DataClassDictMixin):
    """A group and kind selected by the Application."""

    group: str
    kind: str


def is_application(res: Resource) -> bool:
    """Return True if the resource is an Application custom resource."""
    return res.kind == APPLICATION_KIND and res.api_version.startswith(
        APPLICATION_DOMAIN
    )


def component_kinds(selected: list[Resource]) -> list[dict[str, Any]]:
    """Return the distinct kinds of the resources in the order first seen."""
    kinds: list[ComponentKind] = []
    for res in selected:
        if is_application(res):
            continue
        kind = ComponentKind(group=res.api_group or CORE_GROUP, kind=res.kind)
        if kind not in kinds:
            kinds.append(kind)
    return [kind.to_dict() for kind in kinds]


def _merge_links(
    existing: list[dict[str, Any]], links: list[ApplicationLink]
) -> list[dict[str, Any]]:
    merged = list(existing)
    urls = {link.get("url") for link in existing}
    for link in links:
        if link.url in urls:
            continue
        merged.append(link.to_dict())
        urls.add(link.url)
    return merged


def synthesize(
    existing: Resource | None,
    selected: list[Resource],
    app_name: str,
    app_version: str,
    links: list[ApplicationLink],
) -> Resource:
    """Build a new Application resource or update a copy of an existing one."""
    if existing is not None:
        app = existing.copy()
        app_spec = app.doc.setdefault("spec", {})
        app_spec["componentKinds"] = component_kinds(selected)
        if links:
            links_parent = app_spec.setdefault("descriptor", {})
            links_parent["links"] = _merge_links(links_parent.get("links") or [], links)
        _LOGGER.info("Updated existing Application %s", app.name)
        return app

    if not app_name:
        raise InputException(
            "Application name must be set using the --app|-a flag to create an Application resource"
        )
    descriptor: dict[str, Any] = {}
    if app_version:
        descriptor["version"] = app_version
    if links:
        descriptor["links"] = _merge_links([], links)
    spec: dict[str, Any] = {
        "selector": {"matchLabels": {NAME_LABEL: app_name}},
        "componentKinds": component_kinds(selected),
    }
    if descriptor:
        spec["descriptor"] = descriptor
    _LOGGER.info("Created Application %s", app_name)
    return Resource(
        {
            "apiVersion": APPLICATION_API_VERSION,
            "kind": APPLICATION_KIND,
            "metadata": {"name": app_name},
            "spec": spec,
        }
    )
