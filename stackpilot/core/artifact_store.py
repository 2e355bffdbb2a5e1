"""Content-addressed artifact store with a path-style name index.

Storage layout:
    {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat   immutable blobs
    {base_path}/names/{name}                              "sha256:<hex>" pointer

Blobs are never deleted or overwritten. Names (``plan/dev``,
``build/db_init``) are mutable pointers to the latest blob, which is how a
later stage or a separate ``apply`` invocation finds what an earlier one
produced.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from stackpilot.core.hasher import sha256_hex
from stackpilot.models.artifacts import ContentAddressedArtifact

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+(/[A-Za-z0-9_.-]+)*$")


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored artifact's hash does not match its address."""


class ContentAddressedStore:
    """SHA-256 keyed, immutable artifact store.

    Every artifact is stored under its SHA-256 digest. Storing the same
    content twice is a no-op (idempotent).

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        """Strip the ``sha256:`` prefix from a content address, if present."""
        return content_address.removeprefix("sha256:")

    def _artifact_path(self, sha256_digest: str) -> Path:
        return self._base / sha256_digest[:2] / sha256_digest[2:4] / f"{sha256_digest}.dat"

    def _name_path(self, name: str) -> Path:
        if not _NAME_RE.match(name) or any(part in (".", "..") for part in name.split("/")):
            raise ValueError(f"Invalid artifact name: {name!r}")
        return self._base / "names" / name

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(
        self,
        data: bytes,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> ContentAddressedArtifact:
        """Store data and return its content-addressed artifact metadata.

        If the content already exists (same hash), verifies integrity
        and returns the existing artifact without overwriting. When *name*
        is given, the name index is pointed at the stored blob.
        """
        digest = sha256_hex(data)
        path = self._artifact_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing artifact at {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)

        address = f"sha256:{digest}"
        if name:
            self.tag(name, address)

        return ContentAddressedArtifact(
            content_address=address,
            artifact_type=artifact_type,
            name=name or digest[:16],
            size_bytes=len(data),
            metadata=metadata or {},
        )

    def tag(self, name: str, content_address: str) -> None:
        """Point *name* at an existing artifact."""
        if not self.exists(content_address):
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        path = self._name_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(f"sha256:{self._extract_digest(content_address)}", encoding="utf-8")
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def retrieve(self, content_address: str) -> bytes:
        """Retrieve artifact bytes by content address, verifying integrity.

        Parameters
        ----------
        content_address:
            Either "sha256:<hex>" or just the hex digest.
        """
        digest = self._extract_digest(content_address)
        path = self._artifact_path(digest)
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        data = path.read_bytes()
        if sha256_hex(data) != digest:
            raise ArtifactIntegrityError(f"Artifact {content_address} failed integrity check")
        return data

    def resolve(self, name: str) -> str | None:
        """Return the content address *name* points at, or None."""
        path = self._name_path(name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8").strip()

    def retrieve_named(self, name: str) -> bytes:
        address = self.resolve(name)
        if address is None:
            raise FileNotFoundError(f"No artifact named {name!r}")
        return self.retrieve(address)

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, content_address: str) -> bool:
        """Check if an artifact exists in the store."""
        return self._artifact_path(self._extract_digest(content_address)).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self._artifact_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest
