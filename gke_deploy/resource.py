"""Representation of a kubernetes resource parsed from a manifest.

A `Resource` wraps a single manifest document and exposes the identity and
metadata fields that are rewritten while preparing a deployment. The rest of
the document is kept as-is so it can be serialized back out unchanged.

Example usage:
```python
from gke_deploy import resource

resources = resource.parse_documents([("app.yaml", content)])
for res in resources:
    res.set_namespace("prod")
    res.set_label(resource.NAME_LABEL, "my-app")
print(resource.dump_documents(resources))
```
"""

import copy
from dataclasses import dataclass
import logging
from typing import Any

import yaml

from .exceptions import ParseError, ReservedKeyError
from .image import ImageReference

__all__ = [
    "Resource",
    "NamedResource",
    "parse_documents",
    "check_unique",
    "dump_documents",
    "NAME_LABEL",
    "VERSION_LABEL",
    "MANAGED_BY_LABEL",
    "MANAGED_BY_VALUE",
]

_LOGGER = logging.getLogger(__name__)

NAME_LABEL = "app.kubernetes.io/name"
VERSION_LABEL = "app.kubernetes.io/version"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "gcp-cloud-build-deploy"

# Labels owned by gke-deploy mapped to the error for setting them as custom labels.
RESERVED_LABELS = {
    NAME_LABEL: f"{NAME_LABEL} label must be set using the --app|-a flag",
    VERSION_LABEL: f"{VERSION_LABEL} label must be set using the --version|-v flag",
    MANAGED_BY_LABEL: f"{MANAGED_BY_LABEL} label cannot be explicitly set",
}

NAMESPACE_KIND = "Namespace"
DEPLOYMENT_KIND = "Deployment"
SERVICE_KIND = "Service"
APPLICATION_KIND = "Application"

# Keys in a pod spec that hold lists of containers.
CONTAINER_KEYS = ("containers", "initContainers", "ephemeralContainers")


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


def check_reserved_label(key: str) -> None:
    """Raise if the label key is owned by gke-deploy."""
    if (message := RESERVED_LABELS.get(key)) is not None:
        raise ReservedKeyError(message)


class Resource:
    """A single kubernetes object from a manifest document."""

    def __init__(self, doc: dict[str, Any], source: str | None = None) -> None:
        """Initialize Resource from an already validated document."""
        self.doc = doc
        self.source = source

    @classmethod
    def parse_doc(cls, doc: Any, source: str | None = None) -> "Resource":
        """Parse a Resource from a raw kubernetes object."""
        if not isinstance(doc, dict):
            raise ParseError(f"Invalid object in {source or 'input'}, expected a mapping: {doc}")
        if not doc.get("kind"):
            raise ParseError(f"Invalid object in {source or 'input'} missing kind: {doc}")
        if not isinstance(metadata := doc.get("metadata"), dict):
            raise ParseError(f"Invalid object in {source or 'input'} missing metadata: {doc}")
        if not metadata.get("name"):
            raise ParseError(
                f"Invalid object in {source or 'input'} missing metadata.name: {doc}"
            )
        return cls(doc, source=source)

    @property
    def api_version(self) -> str:
        return str(self.doc.get("apiVersion", ""))

    @property
    def api_group(self) -> str:
        """The API group of the object, empty for the core group."""
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def kind(self) -> str:
        return str(self.doc["kind"])

    @property
    def metadata(self) -> dict[str, Any]:
        return self.doc["metadata"]

    @property
    def name(self) -> str:
        return str(self.metadata["name"])

    @property
    def namespace(self) -> str | None:
        return self.metadata.get("namespace") or None

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.metadata.get("labels") or {})

    @property
    def annotations(self) -> dict[str, str]:
        return dict(self.metadata.get("annotations") or {})

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(kind=self.kind, namespace=self.namespace, name=self.name)

    def _upsert(self, field: str, key: str, value: str) -> None:
        if (values := self.metadata.get(field)) is None:
            values = {}
            self.metadata[field] = values
        values[key] = value

    def set_label(self, key: str, value: str, custom: bool = False) -> None:
        """Set a label on the object.

        Custom labels supplied by the user may not override the labels owned
        by gke-deploy.
        """
        if custom:
            check_reserved_label(key)
        self._upsert("labels", key, value)

    def set_annotation(self, key: str, value: str) -> None:
        """Set an annotation on the object."""
        self._upsert("annotations", key, value)

    def set_namespace(self, namespace: str) -> None:
        """Set the namespace of the object, or unset it when empty."""
        if namespace:
            self.metadata["namespace"] = namespace
        else:
            self.metadata.pop("namespace", None)

    def containers(self) -> list[dict[str, Any]]:
        """Return all container definitions found anywhere in the object."""
        return list(_find_containers(self.doc))

    def images(self) -> list[str]:
        """Return the container images referenced by the object."""
        return [
            container["image"]
            for container in self.containers()
            if isinstance(container.get("image"), str)
        ]

    def matches_image(self, image_name: str) -> bool:
        """Return True if any container runs the image, ignoring tag and digest."""
        return any(
            ImageReference.parse(image).name == image_name for image in self.images()
        )

    def substitute_image_digest(self, image_name: str, digest: str) -> int:
        """Pin every container running the image to the digest.

        Returns the number of containers that were updated.
        """
        count = 0
        for container in self.containers():
            if not isinstance(image := container.get("image"), str):
                continue
            ref = ImageReference.parse(image)
            if ref.name != image_name:
                continue
            container["image"] = ref.with_digest(digest).reference
            count += 1
        return count

    def pod_template(self) -> dict[str, Any] | None:
        """Return the pod template of a workload, or None if it has none."""
        spec = self.doc.get("spec") or {}
        if isinstance(job_template := spec.get("jobTemplate"), dict):
            spec = job_template.get("spec") or {}
        if isinstance(template := spec.get("template"), dict):
            return template
        return None

    def set_pod_label(self, key: str, value: str) -> bool:
        """Set a label on the pod template, returning False if there is none."""
        if (template := self.pod_template()) is None:
            return False
        metadata = template.setdefault("metadata", {})
        if (labels := metadata.get("labels")) is None:
            labels = {}
            metadata["labels"] = labels
        labels[key] = value
        return True

    def copy(self) -> "Resource":
        return Resource(copy.deepcopy(self.doc), source=self.source)

    def yaml(self) -> str:
        """Serialize the object as a single YAML document."""
        return yaml.dump(self.doc, sort_keys=False, default_flow_style=False)

    def __repr__(self) -> str:
        return f"Resource({self.resource_id})"


def _find_containers(value: Any) -> Any:
    """Walk the document yielding container definitions."""
    if isinstance(value, dict):
        for key, child in value.items():
            if key in CONTAINER_KEYS and isinstance(child, list):
                for item in child:
                    if isinstance(item, dict):
                        yield item
            else:
                yield from _find_containers(child)
    elif isinstance(value, list):
        for item in value:
            yield from _find_containers(item)


def parse_documents(files: list[tuple[str, bytes]]) -> list[Resource]:
    """Parse the manifest files into resources in discovery order.

    Each file may contain multiple documents. Empty documents are skipped and
    the same kind, namespace and name may not appear twice.
    """
    resources: list[Resource] = []
    for source, content in files:
        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as err:
            raise ParseError(f"failed to parse configuration file {source}: {err}") from err
        for doc in docs:
            if doc is None:
                continue
            resources.append(Resource.parse_doc(doc, source=source))
        _LOGGER.debug("Parsed %d objects from %s", len(resources), source)
    check_unique(resources)
    return resources


def check_unique(resources: list[Resource]) -> None:
    """Raise if two resources share the same kind, namespace and name."""
    seen: dict[NamedResource, str | None] = {}
    for res in resources:
        if res.resource_id in seen:
            raise ParseError(
                f"duplicate resource {res.resource_id} found in {res.source} and {seen[res.resource_id]}"
            )
        seen[res.resource_id] = res.source


def dump_documents(resources: list[Resource]) -> str:
    """Serialize the resources as a single multi-document YAML string."""
    return yaml.dump_all(
        [res.doc for res in resources],
        sort_keys=False,
        explicit_start=True,
        default_flow_style=False,
    )
