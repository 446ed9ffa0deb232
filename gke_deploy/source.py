"""Library for reading configuration files and writing output artifacts.

A configuration locator is either a local path (a single file or a directory)
or a Google Cloud Storage location such as `gs://bucket/config.yaml`,
`gs://bucket/directory/*` or, with the recursive flag, `gs://bucket/directory`.
Objects in Cloud Storage are downloaded to a temporary directory first and then
read like local files.
"""

from abc import ABC, abstractmethod
import logging
from pathlib import Path
import tempfile

import aiofiles
import aiofiles.os
from aiofiles.ospath import exists, isdir

from . import command
from .exceptions import (
    DestinationConflictError,
    GkeDeployException,
    InputException,
    NoManifestsError,
    SourceUnavailableError,
    StorageException,
)

__all__ = [
    "ConfigResolver",
    "Storage",
    "Gsutil",
    "is_gcs",
]

_LOGGER = logging.getLogger(__name__)

GSUTIL_BIN = command.binary("GSUTIL_BIN", "gsutil")
GCS_PREFIX = "gs://"
MANIFEST_SUFFIXES = (".yaml", ".yml")


def is_gcs(locator: str) -> bool:
    """Return True if the locator points to Cloud Storage."""
    return locator.startswith(GCS_PREFIX)


class Storage(ABC):
    """Copies objects to and from Cloud Storage."""

    @abstractmethod
    async def copy(self, src: str, dst: str, recursive: bool) -> None:
        """Copy src to dst, where either side may be a Cloud Storage location."""


class Gsutil(Storage):
    """Storage implementation that shells out to `gsutil cp`."""

    def __init__(self, gsutil_bin: str = GSUTIL_BIN) -> None:
        self._gsutil_bin = gsutil_bin

    async def copy(self, src: str, dst: str, recursive: bool) -> None:
        args = [self._gsutil_bin, "-m", "cp"]
        if recursive:
            args.append("-r")
        args.extend([src, dst])
        await command.run(command.Command(args, exc=StorageException))


async def _walk(path: Path, recursive: bool) -> list[Path]:
    """Return the manifest files in the directory in sorted order."""
    found: list[Path] = []
    for entry in sorted(await aiofiles.os.listdir(path)):
        child = path / entry
        if await isdir(child):
            if recursive:
                found.extend(await _walk(child, recursive))
        elif child.suffix in MANIFEST_SUFFIXES:
            found.append(child)
    return found


async def _read_local(
    path: Path, recursive: bool, display: str
) -> list[tuple[str, bytes]]:
    if not await exists(path):
        raise SourceUnavailableError(f'configuration path "{display}" does not exist')
    if await isdir(path):
        files = await _walk(path, recursive)
        if not files:
            raise NoManifestsError(
                f'directory "{display}" has no ".yaml" or ".yml" files to parse'
            )
    else:
        if path.suffix not in MANIFEST_SUFFIXES:
            raise InputException(f'file "{display}" does not end in ".yaml" or ".yml"')
        files = [path]

    result: list[tuple[str, bytes]] = []
    for file in files:
        async with aiofiles.open(file, mode="rb") as config_file:
            result.append((str(file), await config_file.read()))
    _LOGGER.info("Found %d configuration files in %s", len(result), display)
    return result


class ConfigResolver:
    """Resolves configuration locators into manifest file contents."""

    def __init__(self, storage: Storage | None = None) -> None:
        """Initialize ConfigResolver."""
        self._storage = storage or Gsutil()

    async def read(self, locator: str, recursive: bool) -> list[tuple[str, bytes]]:
        """Return the (name, content) of every manifest file found at the locator."""
        if not is_gcs(locator):
            return await _read_local(Path(locator), recursive, locator)

        with tempfile.TemporaryDirectory(prefix="gke-deploy-config-") as tmp_dir:
            try:
                await self._storage.copy(locator, tmp_dir, recursive)
            except GkeDeployException as err:
                raise SourceUnavailableError(
                    f"failed to download configuration files from {locator}: {err}"
                ) from err
            # Everything under the temporary directory was requested
            return await _read_local(Path(tmp_dir), True, locator)

    async def check_destination(self, dest: str) -> None:
        """Ensure the output directory can be written to."""
        if is_gcs(dest):
            return
        if await exists(dest) and not await isdir(dest):
            raise DestinationConflictError(f'output directory "{dest}" exists as a file')

    async def write(self, dest: str, filename: str, content: str) -> str:
        """Write a single output file into the destination directory.

        Returns the location of the written file.
        """
        await self.check_destination(dest)
        if not is_gcs(dest):
            await aiofiles.os.makedirs(dest, exist_ok=True)
            out_path = Path(dest) / filename
            async with aiofiles.open(out_path, mode="w") as out_file:
                await out_file.write(content)
            _LOGGER.info("Wrote %s", out_path)
            return str(out_path)

        target = f"{dest.rstrip('/')}/{filename}"
        with tempfile.TemporaryDirectory(prefix="gke-deploy-output-") as tmp_dir:
            staged = Path(tmp_dir) / filename
            async with aiofiles.open(staged, mode="w") as out_file:
                await out_file.write(content)
            try:
                await self._storage.copy(str(staged), target, False)
            except GkeDeployException as err:
                raise StorageException(
                    f"failed to upload {filename} to {target}: {err}"
                ) from err
        _LOGGER.info("Wrote %s", target)
        return target
