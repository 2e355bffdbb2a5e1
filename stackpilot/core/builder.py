"""Compute unit packaging.

Each unit lives in ``<source_path>/<unit>/`` with an optional
``requirements.txt``. Dependencies are installed next to the sources and
the result is zipped with sorted entries and fixed timestamps, so the same
inputs always give the same bytes (and therefore the same object key, which
keeps plans idempotent). Units build in parallel; they share nothing.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import sys
import tempfile
import zipfile
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from pathlib import Path

from stackpilot.core.artifact_store import ContentAddressedStore
from stackpilot.models.artifacts import BuildArtifact
from stackpilot.models.outcomes import FatalStepError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "build/manifest"
_FIXED_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
_IGNORED = shutil.ignore_patterns("__pycache__", "*.pyc", "tests", ".pytest_cache")


class BuildError(FatalStepError):
    """A unit could not be packaged."""


def build_artifact_name(unit: str) -> str:
    return f"build/{unit}"


def deterministic_zip(root: Path) -> bytes:
    """Zip every file under *root* reproducibly."""
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            info = zipfile.ZipInfo(path.relative_to(root).as_posix(), date_time=_FIXED_TIMESTAMP)
            info.external_attr = 0o644 << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, path.read_bytes())
    return buffer.getvalue()


class UnitBuilder:
    """Packages compute units into the artifact store.

    Parameters
    ----------
    store:
        Artifact store receiving the packages (named ``build/<unit>``).
    source_path:
        Directory holding one sub-directory per unit.
    workers:
        Maximum number of units built concurrently.
    """

    def __init__(self, store: ContentAddressedStore, source_path: Path, *, workers: int = 4) -> None:
        self._store = store
        self._source = Path(source_path)
        self._workers = max(1, workers)

    def build_all(self, units: Iterable[str]) -> dict[str, BuildArtifact]:
        units = list(units)
        with ThreadPoolExecutor(max_workers=min(self._workers, len(units) or 1)) as pool:
            results = list(pool.map(self.build_unit, units))
        return {artifact.unit: artifact for artifact in results}

    def build_unit(self, unit: str) -> BuildArtifact:
        source = self._source / unit
        if not source.is_dir():
            raise BuildError(f"no source directory for unit {unit} at {source}")

        with tempfile.TemporaryDirectory(prefix=f"stackpilot-{unit}-") as tmp:
            staging = Path(tmp) / "package"
            shutil.copytree(source, staging, ignore=_IGNORED)
            requirements = staging / "requirements.txt"
            if requirements.exists() and requirements.read_text(encoding="utf-8").strip():
                self._install_requirements(unit, requirements, staging)
            data = deterministic_zip(staging)

        stored = self._store.store(
            data,
            name=build_artifact_name(unit),
            artifact_type="build",
            metadata={"unit": unit},
        )
        artifact = BuildArtifact(
            unit=unit, content_address=stored.content_address, size_bytes=stored.size_bytes
        )
        logger.info("Built %s (%d bytes, %s)", unit, artifact.size_bytes, artifact.digest[:12])
        return artifact

    @staticmethod
    def _install_requirements(unit: str, requirements: Path, target: Path) -> None:
        # A failed install still ships the unit's own sources.
        result = subprocess.run(
            [
                sys.executable,
                "-m",
                "pip",
                "install",
                "--quiet",
                "--no-compile",
                "--disable-pip-version-check",
                "-r",
                str(requirements),
                "-t",
                str(target),
            ],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            logger.warning(
                "Dependency install for %s failed (exit %d): %s",
                unit,
                result.returncode,
                result.stderr.strip()[-500:],
            )


def save_manifest(store: ContentAddressedStore, builds: dict[str, BuildArtifact]) -> str:
    """Record the unit -> artifact mapping of the latest build."""
    payload = json.dumps(
        {unit: artifact.model_dump(mode="json") for unit, artifact in sorted(builds.items())},
        sort_keys=True,
    ).encode("utf-8")
    return store.store(payload, name=MANIFEST_NAME, artifact_type="build-manifest").content_address


def load_manifest(store: ContentAddressedStore) -> dict[str, BuildArtifact]:
    """Return the latest build manifest, or an empty mapping if none exists."""
    try:
        raw = json.loads(store.retrieve_named(MANIFEST_NAME))
    except FileNotFoundError:
        return {}
    return {unit: BuildArtifact.model_validate(item) for unit, item in raw.items()}
