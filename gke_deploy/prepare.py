"""Prepares configuration files for deployment.

Preparing reads the configuration files, pins the target image to its digest,
stamps every object with the namespace and the `app.kubernetes.io` labels, and
optionally adds a Service and an Application resource. The result is written as
two artifacts:

  - the expanded artifact, which is exactly what gets applied to the cluster
  - the suggested artifact, which is the expanded artifact annotated with best
    practice suggestions

Example usage:
```python
from gke_deploy import prepare
from gke_deploy.config import PrepareOptions

await prepare.prepare(
    PrepareOptions(
        config="k8s/",
        expanded_output="output/expanded",
        suggested_output="output/suggested",
        image="gcr.io/my-project/my-image:1.0.0",
        app_name="my-app",
    )
)
```
"""

import logging
from typing import Any

from . import application, suggest
from .config import Clients, EXPANDED_FILENAME, PrepareOptions, SUGGESTED_FILENAME
from .exceptions import InputException
from .image import ImageReference, resolve_digest
from .resource import (
    DEPLOYMENT_KIND,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    NAME_LABEL,
    SERVICE_KIND,
    VERSION_LABEL,
    Resource,
    check_reserved_label,
    check_unique,
    dump_documents,
    parse_documents,
)

__all__ = [
    "prepare",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_REPLICAS = 3
DEFAULT_MIN_REPLICAS = 1
DEFAULT_MAX_REPLICAS = 5
DEFAULT_CPU_UTILIZATION = 80


def default_resources(image: ImageReference | None, app_name: str) -> list[Resource]:
    """Return a Deployment and HorizontalPodAutoscaler running the image."""
    if image is None:
        raise InputException(
            "An image must be set using the --image|-i flag when no configuration files are provided"
        )
    base = app_name or image.repository_basename
    deployment_name = f"{base}-deployment"
    deployment = Resource(
        {
            "apiVersion": "apps/v1",
            "kind": DEPLOYMENT_KIND,
            "metadata": {"name": deployment_name, "labels": {"app": base}},
            "spec": {
                "replicas": DEFAULT_REPLICAS,
                "selector": {"matchLabels": {"app": base}},
                "template": {
                    "metadata": {"labels": {"app": base}},
                    "spec": {
                        "containers": [
                            {"name": f"{image.repository_basename}-1", "image": image.reference}
                        ]
                    },
                },
            },
        },
        source="<default>",
    )
    hpa = Resource(
        {
            "apiVersion": "autoscaling/v2",
            "kind": "HorizontalPodAutoscaler",
            "metadata": {"name": f"{base}-hpa", "labels": {"app": base}},
            "spec": {
                "scaleTargetRef": {
                    "apiVersion": "apps/v1",
                    "kind": DEPLOYMENT_KIND,
                    "name": deployment_name,
                },
                "minReplicas": DEFAULT_MIN_REPLICAS,
                "maxReplicas": DEFAULT_MAX_REPLICAS,
                "metrics": [
                    {
                        "type": "Resource",
                        "resource": {
                            "name": "cpu",
                            "target": {
                                "type": "Utilization",
                                "averageUtilization": DEFAULT_CPU_UTILIZATION,
                            },
                        },
                    }
                ],
            },
        },
        source="<default>",
    )
    _LOGGER.info("No configuration provided, using default Deployment %s", deployment_name)
    return [deployment, hpa]


def expose_service(
    resources: list[Resource], app_name: str, port: int
) -> Resource:
    """Return a LoadBalancer Service exposing the application on the port."""
    selector: dict[str, Any]
    if app_name:
        name = app_name
        selector = {NAME_LABEL: app_name}
    else:
        deployments = [res for res in resources if res.kind == DEPLOYMENT_KIND]
        if len(deployments) != 1:
            raise InputException(
                "exposing the application requires an --app|-a name or exactly one Deployment"
            )
        name = deployments[0].name
        template = (deployments[0].doc.get("spec") or {}).get("template") or {}
        if not (selector := (template.get("metadata") or {}).get("labels") or {}):
            raise InputException(
                f"Deployment {name} has no pod template labels to select on"
            )
    return Resource(
        {
            "apiVersion": "v1",
            "kind": SERVICE_KIND,
            "metadata": {"name": f"{name}-service"},
            "spec": {
                "selector": dict(selector),
                "ports": [{"protocol": "TCP", "port": port, "targetPort": port}],
                "type": "LoadBalancer",
            },
        },
        source="<expose>",
    )


def _stamp(res: Resource, options: PrepareOptions) -> None:
    """Set the namespace, labels and annotations on the resource."""
    res.set_namespace(options.namespace)
    if options.app_name:
        res.set_label(NAME_LABEL, options.app_name)
        # Pods must carry the name label for the exposed Service to select them
        res.set_pod_label(NAME_LABEL, options.app_name)
    if options.app_version:
        res.set_label(VERSION_LABEL, options.app_version)
    res.set_label(MANAGED_BY_LABEL, MANAGED_BY_VALUE)
    for key, value in options.labels.items():
        res.set_label(key, value, custom=True)
    for key, value in options.annotations.items():
        res.set_annotation(key, value)


async def prepare(
    options: PrepareOptions, clients: Clients | None = None
) -> list[Resource]:
    """Prepare the expanded and suggested artifacts.

    Nothing is written unless every step succeeds. Returns the expanded
    resources.
    """
    clients = clients or Clients()
    for key in options.labels:
        check_reserved_label(key)

    image = ImageReference.parse(options.image) if options.image else None

    if options.config:
        files = await clients.resolver.read(options.config, options.recursive)
        resources = parse_documents(files)
    else:
        resources = default_resources(image, options.app_name)

    if image is not None:
        digest = await resolve_digest(clients.registry, image)
        count = sum(
            res.substitute_image_digest(image.name, digest) for res in resources
        )
        if not count:
            _LOGGER.warning("Image %s is not used by any container", image.name)

    for res in resources:
        _stamp(res, options)

    if options.expose_port:
        service = expose_service(resources, options.app_name, options.expose_port)
        _stamp(service, options)
        resources.append(service)

    existing = [res for res in resources if application.is_application(res)]
    if len(existing) > 1:
        raise InputException(
            f"found {len(existing)} Application resources, expected at most one"
        )
    if existing or options.create_application_cr:
        app = application.synthesize(
            existing[0] if existing else None,
            resources,
            options.app_name,
            options.app_version,
            options.application_links,
        )
        if existing:
            resources[resources.index(existing[0])] = app
        else:
            _stamp(app, options)
            resources.append(app)

    check_unique(resources)
    expanded = dump_documents(resources)
    suggested = suggest.render(resources)

    await clients.resolver.check_destination(options.expanded_output)
    await clients.resolver.check_destination(options.suggested_output)
    await clients.resolver.write(options.expanded_output, EXPANDED_FILENAME, expanded)
    await clients.resolver.write(options.suggested_output, SUGGESTED_FILENAME, suggested)
    _LOGGER.info("Prepared %d objects", len(resources))
    return resources
