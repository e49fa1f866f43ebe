"""Artifact storage for Image Resizer.

Manages the on-disk namespaces for uploaded originals and processed
outputs: unique name generation, atomic writes, safe lookup by name,
listing with creation times, and deletion.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import time
from pathlib import Path
from typing import Callable

from .errors import NotFound, ProcessingFailure
from .models import ArtifactKind, ArtifactRef


logger = logging.getLogger(__name__)

# Directory name for each namespace under the store root
NAMESPACE_DIRS = {
    ArtifactKind.UPLOADED: "uploads",
    ArtifactKind.PROCESSED: "processed",
}

PARTIAL_PREFIX = ".partial-"

EXTENSION_PATTERN = re.compile(r'^\.[a-z0-9]{1,8}$')

# Retries for the (practically impossible) case of a name collision
MAX_NAME_ATTEMPTS = 5


def generate_name(prefix: str = "", extension: str = "", now: float | None = None) -> str:
    """Generate a collision-resistant filename.

    Format: <prefix><epoch-ms>-<8 hex chars><extension>,
    e.g. resized-1714060800123-a3f9b2c1.png

    Args:
        prefix: Optional name prefix
        extension: Extension including the dot, or empty
        now: Time to embed (defaults to time.time())

    Returns:
        Generated filename
    """
    if now is None:
        now = time.time()
    return f"{prefix}{int(now * 1000)}-{secrets.token_hex(4)}{extension}"


def is_safe_name(name: str) -> bool:
    """Check that a name cannot escape its namespace directory.

    Rejects empty names, path separators, parent-directory sequences,
    hidden/partial files and NUL bytes.
    """
    if not name or name in {'.', '..'}:
        return False
    if '/' in name or '\\' in name or '\x00' in name:
        return False
    if '..' in name or name.startswith('.'):
        return False
    return True


def normalize_extension(extension: str) -> str:
    """Lowercase an extension and ensure a leading dot; empty if unusable."""
    if not extension:
        return ""
    extension = extension.lower()
    if not extension.startswith('.'):
        extension = '.' + extension
    return extension if EXTENSION_PATTERN.match(extension) else ""


class ArtifactStore:
    """Flat, uniquely-named file namespaces on local disk."""

    def __init__(self, root: Path, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            root: Directory holding the namespace directories
            clock: Source of the current epoch time
        """
        self.root = Path(root)
        self.clock = clock

    def namespace_dir(self, kind: ArtifactKind) -> Path:
        """Get the directory for a namespace."""
        return self.root / NAMESPACE_DIRS[kind]

    def ensure_directories(self) -> None:
        """Ensure all namespace directories exist."""
        for kind in ArtifactKind:
            self.namespace_dir(kind).mkdir(parents=True, exist_ok=True)

    def store(
        self,
        data: bytes,
        kind: ArtifactKind,
        extension: str = "",
        prefix: str = "",
    ) -> ArtifactRef:
        """Write data as a new artifact under a generated name.

        The data is written to a hidden partial file and renamed into place,
        so readers never see a half-written artifact. On failure the partial
        file is removed.

        Args:
            data: File content
            kind: Target namespace
            extension: File extension for the generated name
            prefix: Optional name prefix

        Returns:
            Reference to the stored artifact

        Raises:
            ProcessingFailure: If the file cannot be written
        """
        directory = self.namespace_dir(kind)
        directory.mkdir(parents=True, exist_ok=True)
        extension = normalize_extension(extension)

        for _ in range(MAX_NAME_ATTEMPTS):
            name = generate_name(prefix, extension, now=self.clock())
            final_path = directory / name
            partial_path = directory / f"{PARTIAL_PREFIX}{name}"

            try:
                # Exclusive create claims the name for this writer
                with open(partial_path, 'xb') as f:
                    f.write(data)
            except FileExistsError:
                continue
            except OSError as e:
                _remove_quietly(partial_path)
                raise ProcessingFailure(f"Failed to write artifact {name}: {e}") from e

            if final_path.exists():
                _remove_quietly(partial_path)
                continue

            try:
                os.replace(partial_path, final_path)
                stat = final_path.stat()
            except OSError as e:
                _remove_quietly(partial_path)
                _remove_quietly(final_path)
                raise ProcessingFailure(f"Failed to store artifact {name}: {e}") from e

            logger.debug("Stored %s artifact %s (%d bytes)", kind.value, name, stat.st_size)
            return ArtifactRef(
                name=name,
                kind=kind,
                size=stat.st_size,
                created_at=stat.st_mtime,
                path=final_path,
            )

        raise ProcessingFailure("Could not generate a unique artifact name")

    def path_for(self, name: str, kind: ArtifactKind = ArtifactKind.PROCESSED) -> Path:
        """Resolve a name to an existing file inside a namespace.

        Raises:
            NotFound: If the name is unsafe or no such file exists
        """
        if not is_safe_name(name):
            raise NotFound(f"Invalid artifact name: {name!r}")

        directory = self.namespace_dir(kind)
        path = directory / name
        try:
            path.resolve().relative_to(directory.resolve())
        except ValueError:
            raise NotFound(f"Invalid artifact name: {name!r}")

        if not path.is_file():
            raise NotFound(f"Artifact not found: {name}")
        return path

    def retrieve(self, name: str, kind: ArtifactKind = ArtifactKind.PROCESSED) -> bytes:
        """Read an artifact's content.

        Raises:
            NotFound: If the artifact does not exist (including when it is
                removed while being read)
        """
        path = self.path_for(name, kind)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"Artifact not found: {name}")

    def get(self, name: str, kind: ArtifactKind = ArtifactKind.PROCESSED) -> ArtifactRef:
        """Get a reference to an existing artifact.

        Raises:
            NotFound: If the artifact does not exist
        """
        path = self.path_for(name, kind)
        try:
            stat = path.stat()
        except FileNotFoundError:
            raise NotFound(f"Artifact not found: {name}")
        return ArtifactRef(name=name, kind=kind, size=stat.st_size, created_at=stat.st_mtime, path=path)

    def delete(self, name: str, kind: ArtifactKind = ArtifactKind.PROCESSED) -> None:
        """Delete an artifact.

        Raises:
            NotFound: If the artifact does not exist
        """
        path = self.path_for(name, kind)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFound(f"Artifact not found: {name}")
        logger.debug("Deleted %s artifact %s", kind.value, name)

    def list(self, kind: ArtifactKind) -> list[ArtifactRef]:
        """List the artifacts in a namespace, oldest first.

        Files that disappear while listing are skipped.
        """
        directory = self.namespace_dir(kind)
        if not directory.exists():
            return []

        artifacts = []
        for entry in os.scandir(directory):
            if entry.name.startswith('.'):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                continue
            artifacts.append(ArtifactRef(
                name=entry.name,
                kind=kind,
                size=stat.st_size,
                created_at=stat.st_mtime,
                path=Path(entry.path),
            ))

        artifacts.sort(key=lambda a: a.created_at)
        return artifacts

    def purge_partials(self, kind: ArtifactKind, older_than: float) -> list[str]:
        """Remove partial files left behind by writes that never finished.

        Args:
            kind: Namespace to clean
            older_than: Only partial files last modified before this time
                are removed

        Returns:
            Names of the removed partial files
        """
        directory = self.namespace_dir(kind)
        if not directory.exists():
            return []

        removed = []
        for entry in os.scandir(directory):
            if not entry.name.startswith(PARTIAL_PREFIX):
                continue
            try:
                if entry.stat().st_mtime >= older_than:
                    continue
                os.unlink(entry.path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to remove partial file %s: %s", entry.name, e)
                continue
            removed.append(entry.name)

        if removed:
            logger.debug("Removed %d partial %s files", len(removed), kind.value)
        return removed


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
