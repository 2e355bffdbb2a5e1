"""Tests for ContentAddressedStore: immutability, integrity, named pointers."""

from __future__ import annotations

import pytest

from stackpilot.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from stackpilot.core.hasher import sha256_hex


class TestContentAddressedStore:
    def test_store_and_retrieve(self, artifact_store: ContentAddressedStore):
        data = b"hello stackpilot"
        artifact = artifact_store.store(data)
        assert artifact.content_address.startswith("sha256:")
        assert artifact.size_bytes == len(data)
        assert artifact_store.retrieve(artifact.content_address) == data

    def test_content_addressing(self, artifact_store: ContentAddressedStore):
        data = b"deterministic content"
        artifact = artifact_store.store(data)
        assert artifact.content_address == f"sha256:{sha256_hex(data)}"

    def test_idempotent_store(self, artifact_store: ContentAddressedStore):
        a1 = artifact_store.store(b"store me twice")
        a2 = artifact_store.store(b"store me twice")
        assert a1.content_address == a2.content_address

    def test_exists_and_verify(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store(b"check existence")
        assert artifact_store.exists(artifact.content_address) is True
        assert artifact_store.verify(artifact.content_address) is True
        assert artifact_store.exists("sha256:nonexistent") is False
        assert artifact_store.verify("sha256:nonexistent") is False

    def test_retrieve_nonexistent(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.retrieve("sha256:0000000000000000")

    def test_tampered_blob_detected(self, artifact_store: ContentAddressedStore, tmp_dir):
        artifact = artifact_store.store(b"original bytes")
        digest = artifact.content_address.removeprefix("sha256:")
        blob = tmp_dir / "artifacts" / digest[:2] / digest[2:4] / f"{digest}.dat"
        blob.write_bytes(b"tampered bytes")
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.retrieve(artifact.content_address)


class TestNamedArtifacts:
    def test_name_points_at_latest(self, artifact_store: ContentAddressedStore):
        first = artifact_store.store(b"plan one", name="plan/dev")
        second = artifact_store.store(b"plan two", name="plan/dev")
        assert artifact_store.resolve("plan/dev") == second.content_address
        assert artifact_store.retrieve_named("plan/dev") == b"plan two"
        # older blob is kept
        assert artifact_store.retrieve(first.content_address) == b"plan one"

    def test_unknown_name(self, artifact_store: ContentAddressedStore):
        assert artifact_store.resolve("plan/staging") is None
        with pytest.raises(FileNotFoundError):
            artifact_store.retrieve_named("plan/staging")

    @pytest.mark.parametrize("name", ["../escape", "/absolute", "plan//dev", "with space"])
    def test_invalid_names_rejected(self, artifact_store: ContentAddressedStore, name: str):
        with pytest.raises(ValueError):
            artifact_store.store(b"x", name=name)

    def test_tag_requires_existing_artifact(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.tag("build/db_init", "sha256:" + "0" * 64)
