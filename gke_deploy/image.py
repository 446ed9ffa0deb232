"""Helper functions for working with container images.

Images are referenced as `[registry/]repository[:tag][@digest]`. When preparing
a deployment the tag of the target image is resolved to a content digest so that
the deployed objects are pinned to an immutable image.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

from . import command
from .exceptions import (
    GkeDeployException,
    ImageResolutionError,
    InputException,
    RegistryException,
)

__all__ = [
    "ImageReference",
    "RegistryClient",
    "Crane",
    "resolve_digest",
]

_LOGGER = logging.getLogger(__name__)

CRANE_BIN = command.binary("CRANE_BIN", "crane")

DIGEST_PREFIX = "sha256:"


@dataclass(frozen=True)
class ImageReference:
    """A parsed container image reference."""

    name: str
    """The registry and repository path, without tag or digest."""

    tag: str | None = None
    """The tag of the image, if any."""

    digest: str | None = None
    """The content digest of the image e.g. `sha256:...`, if any."""

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """Parse an image reference string."""
        if not value or any(char.isspace() for char in value):
            raise InputException(f"Invalid image reference '{value}'")
        name, digest = value, None
        if "@" in value:
            name, digest = value.split("@", 1)
            if not digest:
                raise InputException(f"Invalid image reference '{value}' has empty digest")
        tag = None
        # A colon before the last slash is a registry port, not a tag.
        if (idx := name.rfind(":")) > name.rfind("/"):
            name, tag = name[:idx], name[idx + 1 :]
            if not tag:
                raise InputException(f"Invalid image reference '{value}' has empty tag")
        if not name:
            raise InputException(f"Invalid image reference '{value}' has empty name")
        return cls(name=name, tag=tag, digest=digest)

    @property
    def repository_basename(self) -> str:
        """The last path component of the repository, e.g. `my-image`."""
        return self.name.rsplit("/", 1)[-1]

    def with_digest(self, digest: str) -> "ImageReference":
        """Return the digest qualified form of this image."""
        return ImageReference(name=self.name, digest=digest)

    @property
    def reference(self) -> str:
        """Render the reference as a string."""
        if self.digest:
            return f"{self.name}@{self.digest}"
        if self.tag:
            return f"{self.name}:{self.tag}"
        return self.name

    def __str__(self) -> str:
        return self.reference


class RegistryClient(ABC):
    """Resolves image references against a container registry."""

    @abstractmethod
    async def digest(self, image: ImageReference) -> str:
        """Return the content digest of the image."""


class Crane(RegistryClient):
    """Registry client that shells out to `crane digest`."""

    def __init__(self, crane_bin: str = CRANE_BIN) -> None:
        self._crane_bin = crane_bin

    async def digest(self, image: ImageReference) -> str:
        out = await command.run(
            command.Command(
                [self._crane_bin, "digest", image.reference], exc=RegistryException
            )
        )
        digest = out.strip()
        if not digest.startswith(DIGEST_PREFIX):
            raise RegistryException(
                f"Unexpected digest output for image {image}: '{digest}'"
            )
        return digest


async def resolve_digest(registry: RegistryClient, image: ImageReference) -> str:
    """Return the digest for the image, looking it up when it is not pinned."""
    if image.digest:
        _LOGGER.debug("Image %s is already pinned to a digest", image)
        return image.digest
    try:
        digest = await registry.digest(image)
    except GkeDeployException as err:
        raise ImageResolutionError(
            f"failed to get image digest for {image}: {err}"
        ) from err
    _LOGGER.info("Resolved image %s to digest %s", image, digest)
    return digest
