"""Configuration objects for gke-deploy."""

from dataclasses import dataclass, field
from datetime import timedelta

from .application import ApplicationLink
from .cluster import ClusterClient, CredentialProvisioner, Gcloud, Kubectl
from .image import Crane, RegistryClient
from .source import ConfigResolver

EXPANDED_FILENAME = "expanded-resources.yaml"
SUGGESTED_FILENAME = "suggested-resources.yaml"
DEFAULT_OUTPUT = "./output"
DEFAULT_WAIT_TIMEOUT = timedelta(minutes=5)


@dataclass
class Clients:
    """External collaborators used by the prepare and apply pipelines."""

    resolver: ConfigResolver = field(default_factory=ConfigResolver)
    """Reads configuration files and writes output artifacts."""

    registry: RegistryClient = field(default_factory=Crane)
    """Resolves image tags to digests."""

    cluster: ClusterClient = field(default_factory=Kubectl)
    """Applies and reads objects in the cluster."""

    credentials: CredentialProvisioner = field(default_factory=Gcloud)
    """Fetches credentials for the target cluster."""


@dataclass
class PrepareOptions:
    """Parameters for preparing the deployment artifacts."""

    config: str
    """Locator of the configuration files, empty to use a default Deployment."""

    expanded_output: str
    """Directory or Cloud Storage location for the expanded artifact."""

    suggested_output: str
    """Directory or Cloud Storage location for the suggested artifact."""

    image: str | None = None
    """Image to pin to a digest in the configuration files."""

    app_name: str = ""
    """Value of the app.kubernetes.io/name label."""

    app_version: str = ""
    """Value of the app.kubernetes.io/version label."""

    namespace: str = ""
    """Namespace of the deployed objects, empty to leave it unset."""

    labels: dict[str, str] = field(default_factory=dict)
    """Custom labels added to every object."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Custom annotations added to every object."""

    expose_port: int = 0
    """Port to expose the application on with a Service, 0 to disable."""

    recursive: bool = False
    """Read configuration files from nested directories."""

    create_application_cr: bool = False
    """Create an Application resource aggregating the deployed objects."""

    application_links: list[ApplicationLink] = field(default_factory=list)
    """Links added to the Application resource."""


@dataclass(frozen=True)
class DeployRequest:
    """Parameters for applying configuration files to a cluster."""

    config: str
    """Locator of the configuration files to apply."""

    cluster_name: str = ""
    """Name of the GKE cluster, empty to use the current kubectl context."""

    cluster_location: str = ""
    """Zone or region of the GKE cluster, set together with the name."""

    cluster_project: str = ""
    """Project of the GKE cluster, empty for the gcloud default."""

    namespace: str = ""
    """Namespace override, empty to keep the namespace in the files."""

    wait_timeout: timedelta = DEFAULT_WAIT_TIMEOUT
    """Time to wait for the deployed objects to become ready."""

    recursive: bool = False
    """Read configuration files from nested directories."""


@dataclass
class WaitOptions:
    """Tuning for polling the cluster while waiting for readiness."""

    poll_interval: timedelta = timedelta(seconds=1)
    """Time between status checks of a single object."""
