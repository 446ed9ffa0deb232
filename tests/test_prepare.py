"""Tests for preparing the deployment artifacts."""

from pathlib import Path
from typing import Any

import pytest
import yaml

from gke_deploy.application import ApplicationLink
from gke_deploy.config import (
    EXPANDED_FILENAME,
    SUGGESTED_FILENAME,
    Clients,
    PrepareOptions,
)
from gke_deploy.exceptions import (
    DestinationConflictError,
    ImageResolutionError,
    InputException,
    NoManifestsError,
    ParseError,
    RegistryException,
    ReservedKeyError,
    SourceUnavailableError,
)
from gke_deploy.prepare import prepare
from gke_deploy.resource import MANAGED_BY_LABEL, NAME_LABEL, VERSION_LABEL
from gke_deploy.suggest import HEADER

from .fakes import CONFIGS, DIGEST, FakeRegistry, FakeStorage

IMAGE = "gcr.io/my-project/my-image:1.0.0"
PINNED = f"gcr.io/my-project/my-image@{DIGEST}"
SIDECAR = "gcr.io/my-project/sidecar:2.0.0"


def make_options(output_dir: Path, config: str, **kwargs: Any) -> PrepareOptions:
    return PrepareOptions(
        config=config,
        expanded_output=str(output_dir / "expanded"),
        suggested_output=str(output_dir / "suggested"),
        **kwargs,
    )


def load_expanded(output_dir: Path) -> list[dict[str, Any]]:
    content = (output_dir / "expanded" / EXPANDED_FILENAME).read_text()
    return list(yaml.safe_load_all(content))


def container_images(doc: dict[str, Any]) -> list[str]:
    containers = doc["spec"]["template"]["spec"]["containers"]
    return [container["image"] for container in containers]


async def test_prepare_directory(clients: Clients, output_dir: Path) -> None:
    """Test the expanded artifact of a directory of configuration files."""
    options = make_options(
        output_dir,
        str(CONFIGS / "directory"),
        image=IMAGE,
        app_name="test-app",
        app_version="1.0.0",
        namespace="foobar",
    )
    resources = await prepare(options, clients)

    docs = load_expanded(output_dir)
    assert docs == [res.doc for res in resources]
    assert [(doc["kind"], doc["metadata"]["name"]) for doc in docs] == [
        ("Deployment", "test-app-2"),
        ("Deployment", "test-app"),
        ("Service", "test-app"),
    ]
    for doc in docs:
        assert doc["metadata"]["namespace"] == "foobar"
        assert doc["metadata"]["labels"][NAME_LABEL] == "test-app"
        assert doc["metadata"]["labels"][VERSION_LABEL] == "1.0.0"
        assert doc["metadata"]["labels"][MANAGED_BY_LABEL] == "gcp-cloud-build-deploy"
    assert container_images(docs[0]) == [PINNED, SIDECAR]
    assert container_images(docs[1]) == [PINNED, SIDECAR]


async def test_prepare_suggested(clients: Clients, output_dir: Path) -> None:
    """Test the suggested artifact holds the same objects as the expanded one."""
    options = make_options(output_dir, str(CONFIGS / "multi-resource.yaml"), image=IMAGE)
    await prepare(options, clients)

    suggested = (output_dir / "suggested" / SUGGESTED_FILENAME).read_text()
    assert suggested.startswith(HEADER)
    assert "# Suggestion: add a readinessProbe to container test-app" in suggested
    assert f"pin image {IMAGE}" not in suggested
    assert f"pin image {SIDECAR} to a digest" in suggested
    assert list(yaml.safe_load_all(suggested)) == load_expanded(output_dir)


async def test_prepare_custom_labels_and_annotations(
    clients: Clients, output_dir: Path
) -> None:
    """Test custom labels and annotations are added to every object."""
    options = make_options(
        output_dir,
        str(CONFIGS / "multi-resource.yaml"),
        labels={"foo": "bar", "hi": "bye"},
        annotations={"a/b/c.d.f.g": "h/i/j.k.l.m"},
    )
    await prepare(options, clients)

    for doc in load_expanded(output_dir):
        labels = doc["metadata"]["labels"]
        assert labels["foo"] == "bar"
        assert labels["hi"] == "bye"
        assert labels[MANAGED_BY_LABEL] == "gcp-cloud-build-deploy"
        assert NAME_LABEL not in labels
        assert doc["metadata"]["annotations"] == {"a/b/c.d.f.g": "h/i/j.k.l.m"}


@pytest.mark.parametrize(
    ("label", "expected_error"),
    [
        (NAME_LABEL, "must be set using the --app|-a flag"),
        (VERSION_LABEL, "must be set using the --version|-v flag"),
        (MANAGED_BY_LABEL, "cannot be explicitly set"),
    ],
)
async def test_prepare_reserved_label(
    clients: Clients, output_dir: Path, label: str, expected_error: str
) -> None:
    """Test reserved labels can't be set as custom labels."""
    options = make_options(
        output_dir, str(CONFIGS / "deployment.yaml"), labels={label: "foobar"}
    )
    with pytest.raises(ReservedKeyError, match=expected_error.replace("|", r"\|")):
        await prepare(options, clients)
    assert not output_dir.exists()


async def test_prepare_no_namespace(clients: Clients, output_dir: Path) -> None:
    """Test the namespace is left unset when empty."""
    options = make_options(output_dir, str(CONFIGS / "deployment-and-namespace"))
    await prepare(options, clients)
    for doc in load_expanded(output_dir):
        assert "namespace" not in doc["metadata"]


async def test_prepare_namespace_kind(clients: Clients, output_dir: Path) -> None:
    """Test the namespace is set on every object including Namespaces."""
    options = make_options(
        output_dir, str(CONFIGS / "deployment-and-namespace"), namespace="foobar"
    )
    await prepare(options, clients)
    assert [doc["metadata"]["namespace"] for doc in load_expanded(output_dir)] == [
        "foobar",
        "foobar",
    ]


async def test_prepare_idempotent(clients: Clients, tmp_path: Path) -> None:
    """Test preparing the expanded artifact again produces the same artifact."""
    first = tmp_path / "first"
    second = tmp_path / "second"
    kwargs: dict[str, Any] = {
        "image": IMAGE,
        "app_name": "test-app",
        "app_version": "1.0.0",
        "namespace": "foobar",
        "labels": {"foo": "bar"},
        "annotations": {"a": "b"},
    }
    await prepare(make_options(first, str(CONFIGS / "directory"), **kwargs), clients)
    await prepare(make_options(second, str(first / "expanded"), **kwargs), clients)

    assert (first / "expanded" / EXPANDED_FILENAME).read_bytes() == (
        second / "expanded" / EXPANDED_FILENAME
    ).read_bytes()


async def test_prepare_image_not_used(
    clients: Clients, registry: FakeRegistry, output_dir: Path
) -> None:
    """Test an image that no container runs leaves the images unchanged."""
    options = make_options(
        output_dir, str(CONFIGS / "deployment.yaml"), image="gcr.io/other/image:1"
    )
    await prepare(options, clients)
    (doc,) = load_expanded(output_dir)
    assert container_images(doc) == [IMAGE, SIDECAR]
    assert len(registry.requests) == 1


async def test_prepare_registry_error(clients: Clients, output_dir: Path) -> None:
    """Test a failed digest lookup writes nothing."""
    clients.registry = FakeRegistry(
        error=RegistryException("failed to get remote image: UNAUTHORIZED")
    )
    options = make_options(output_dir, str(CONFIGS / "deployment.yaml"), image=IMAGE)
    with pytest.raises(ImageResolutionError, match="failed to get remote image"):
        await prepare(options, clients)
    assert not output_dir.exists()


async def test_prepare_invalid_image(clients: Clients, output_dir: Path) -> None:
    """Test an invalid image reference."""
    options = make_options(output_dir, str(CONFIGS / "deployment.yaml"), image="a b")
    with pytest.raises(InputException):
        await prepare(options, clients)


async def test_prepare_empty_directory(clients: Clients, output_dir: Path) -> None:
    """Test a directory without configuration files."""
    options = make_options(output_dir, str(CONFIGS / "empty-directory"))
    with pytest.raises(NoManifestsError, match="has no"):
        await prepare(options, clients)


async def test_prepare_destination_is_file(clients: Clients, tmp_path: Path) -> None:
    """Test an output directory that exists as a file writes nothing."""
    conflict = tmp_path / "expanded"
    conflict.write_text("not a directory")
    options = PrepareOptions(
        config=str(CONFIGS / "deployment.yaml"),
        expanded_output=str(tmp_path / "ok"),
        suggested_output=str(conflict),
    )
    with pytest.raises(DestinationConflictError, match="exists as a file"):
        await prepare(options, clients)
    assert not (tmp_path / "ok").exists()


async def test_prepare_gcs(clients: Clients, storage: FakeStorage) -> None:
    """Test reading from and writing to Cloud Storage."""
    options = PrepareOptions(
        config="gs://bucket/directory/*",
        expanded_output="gs://bucket/output/expanded",
        suggested_output="gs://bucket/output/suggested",
        image=IMAGE,
    )
    resources = await prepare(options, clients)
    assert sorted(storage.uploads) == [
        f"gs://bucket/output/expanded/{EXPANDED_FILENAME}",
        f"gs://bucket/output/suggested/{SUGGESTED_FILENAME}",
    ]
    expanded = storage.uploads[f"gs://bucket/output/expanded/{EXPANDED_FILENAME}"]
    assert list(yaml.safe_load_all(expanded)) == [res.doc for res in resources]


async def test_prepare_expose(clients: Clients, output_dir: Path) -> None:
    """Test exposing the application with a LoadBalancer Service."""
    options = make_options(
        output_dir,
        str(CONFIGS / "deployment.yaml"),
        app_name="test-app",
        namespace="foobar",
        expose_port=8080,
    )
    await prepare(options, clients)

    deployment, service = load_expanded(output_dir)
    pod_labels = deployment["spec"]["template"]["metadata"]["labels"]
    assert pod_labels == {"app": "test-app", NAME_LABEL: "test-app"}
    assert service["spec"]["selector"].items() <= pod_labels.items()
    assert service["kind"] == "Service"
    assert service["metadata"]["name"] == "test-app-service"
    assert service["metadata"]["namespace"] == "foobar"
    assert service["metadata"]["labels"][NAME_LABEL] == "test-app"
    assert service["spec"] == {
        "selector": {NAME_LABEL: "test-app"},
        "ports": [{"protocol": "TCP", "port": 8080, "targetPort": 8080}],
        "type": "LoadBalancer",
    }


async def test_prepare_expose_without_app(clients: Clients, output_dir: Path) -> None:
    """Test exposing selects the pod labels of the only Deployment."""
    options = make_options(
        output_dir, str(CONFIGS / "deployment.yaml"), expose_port=80
    )
    await prepare(options, clients)
    _, service = load_expanded(output_dir)
    assert service["metadata"]["name"] == "test-app-service"
    assert service["spec"]["selector"] == {"app": "test-app"}


async def test_prepare_expose_ambiguous(clients: Clients, output_dir: Path) -> None:
    """Test exposing needs a name when there are several Deployments."""
    options = make_options(output_dir, str(CONFIGS / "directory"), expose_port=80)
    with pytest.raises(InputException, match="exactly one Deployment"):
        await prepare(options, clients)


async def test_prepare_create_application(clients: Clients, output_dir: Path) -> None:
    """Test creating an Application resource."""
    options = make_options(
        output_dir,
        str(CONFIGS / "multi-resource.yaml"),
        app_name="test-app",
        app_version="1.0.0",
        namespace="foobar",
        create_application_cr=True,
        application_links=[
            ApplicationLink("Dashboard", "https://example.com/dashboard")
        ],
    )
    await prepare(options, clients)

    *_, app = load_expanded(output_dir)
    assert app["apiVersion"] == "app.k8s.io/v1beta1"
    assert app["kind"] == "Application"
    assert app["metadata"]["name"] == "test-app"
    assert app["metadata"]["namespace"] == "foobar"
    assert app["metadata"]["labels"][NAME_LABEL] == "test-app"
    assert app["spec"] == {
        "selector": {"matchLabels": {NAME_LABEL: "test-app"}},
        "componentKinds": [
            {"group": "apps", "kind": "Deployment"},
            {"group": "core", "kind": "Service"},
        ],
        "descriptor": {
            "version": "1.0.0",
            "links": [
                {"description": "Dashboard", "url": "https://example.com/dashboard"}
            ],
        },
    }


async def test_prepare_create_application_without_name(
    clients: Clients, output_dir: Path
) -> None:
    """Test an Application resource needs a name."""
    options = make_options(
        output_dir, str(CONFIGS / "multi-resource.yaml"), create_application_cr=True
    )
    with pytest.raises(InputException, match="Application name must be set"):
        await prepare(options, clients)


async def test_prepare_existing_application(clients: Clients, output_dir: Path) -> None:
    """Test an Application in the input is updated in place."""
    options = make_options(
        output_dir,
        str(CONFIGS / "directory-with-application"),
        app_name="my-app",
        application_links=[
            ApplicationLink("Existing link", "https://foo.com/bar"),
            ApplicationLink("New link", "https://foo.com/baz"),
        ],
    )
    await prepare(options, clients)

    docs = load_expanded(output_dir)
    assert [doc["kind"] for doc in docs] == ["Application", "Deployment", "Service"]
    app = docs[0]
    assert app["metadata"]["labels"]["team"] == "payments"
    assert app["spec"]["componentKinds"] == [
        {"group": "apps", "kind": "Deployment"},
        {"group": "core", "kind": "Service"},
    ]
    assert app["spec"]["descriptor"]["links"] == [
        {"description": "Existing link", "url": "https://foo.com/bar"},
        {"description": "New link", "url": "https://foo.com/baz"},
    ]


async def test_prepare_multiple_applications(
    clients: Clients, tmp_path: Path
) -> None:
    """Test more than one Application in the input is rejected."""
    config = tmp_path / "config"
    config.mkdir()
    app = (CONFIGS / "directory-with-application" / "application.yaml").read_text()
    (config / "app-1.yaml").write_text(app)
    (config / "app-2.yaml").write_text(app.replace("name: my-app", "name: my-app-2"))
    options = make_options(tmp_path / "output", str(config))
    with pytest.raises(InputException, match="found 2 Application resources"):
        await prepare(options, clients)


async def test_prepare_default_resources(
    clients: Clients, output_dir: Path
) -> None:
    """Test a Deployment and autoscaler are generated without configuration."""
    options = make_options(output_dir, "", image=IMAGE, namespace="foobar")
    await prepare(options, clients)

    deployment, hpa = load_expanded(output_dir)
    assert deployment["kind"] == "Deployment"
    assert deployment["metadata"]["name"] == "my-image-deployment"
    assert deployment["spec"]["replicas"] == 3
    assert deployment["spec"]["template"]["spec"]["containers"] == [
        {"name": "my-image-1", "image": PINNED}
    ]
    assert hpa["kind"] == "HorizontalPodAutoscaler"
    assert hpa["metadata"]["name"] == "my-image-hpa"
    assert hpa["metadata"]["namespace"] == "foobar"
    assert hpa["spec"]["scaleTargetRef"]["name"] == "my-image-deployment"


async def test_prepare_default_resources_need_image(
    clients: Clients, output_dir: Path
) -> None:
    """Test generating the default Deployment needs an image."""
    with pytest.raises(InputException, match="An image must be set"):
        await prepare(make_options(output_dir, ""), clients)


async def test_prepare_namespace_collision(clients: Clients, tmp_path: Path) -> None:
    """Test objects that collide once the namespace is set are rejected."""
    config = tmp_path / "config"
    config.mkdir()
    for namespace in ("one", "two"):
        (config / f"{namespace}.yaml").write_text(
            "apiVersion: v1\n"
            "kind: ConfigMap\n"
            "metadata:\n"
            "  name: x\n"
            f"  namespace: {namespace}\n"
        )
    options = make_options(tmp_path / "output", str(config), namespace="foobar")
    with pytest.raises(ParseError, match="duplicate resource ConfigMap/foobar/x"):
        await prepare(options, clients)
    assert not (tmp_path / "output").exists()


async def test_prepare_gcs_directory_not_recursive(
    clients: Clients, output_dir: Path
) -> None:
    """Test a Cloud Storage directory needs the recursive flag."""
    options = make_options(output_dir, "gs://bucket/directory")
    with pytest.raises(
        SourceUnavailableError, match="failed to download configuration files"
    ):
        await prepare(options, clients)
    assert not output_dir.exists()
