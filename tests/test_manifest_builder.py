"""
Test OCI manifest construction from component archives.
"""
from __future__ import annotations

import json
import threading

import pytest

from component_cli.archive import ComponentArchive
from component_cli.cache import BlobCache, compute_digest
from component_cli.codec import encode_canonical_json
from component_cli.errors import BlobReadError, ManifestBuildError, OperationCancelled, StructuralError
from component_cli.manifest import OCIManifest, build_manifest
from component_cli.media_types import (
    COMPONENT_DESCRIPTOR_CONFIG,
    COMPONENT_NAME_ANNOTATION,
    OCI_IMAGE_MANIFEST,
    TITLE_ANNOTATION,
)
from component_cli.models import OCIRegistryAccess

from .helpers.archives import example_archive, external_resource, local_resource, write_archive


class TestBuildManifest:

    def test_example_archive(self, tmp_path, cache):
        archive = example_archive(tmp_path / "a")

        manifest = build_manifest(cache, archive)

        assert manifest.media_type == OCI_IMAGE_MANIFEST
        assert manifest.config.media_type == COMPONENT_DESCRIPTOR_CONFIG
        assert manifest.config.digest == compute_digest(encode_canonical_json(archive.descriptor))
        assert len(manifest.layers) == 1
        layer = manifest.layers[0]
        assert layer.digest == compute_digest(b"0123456789")
        assert layer.size == 10
        assert layer.media_type == "application/octet-stream"
        assert layer.annotations == {TITLE_ANNOTATION: "cli-binary-linux"}
        assert manifest.annotations[COMPONENT_NAME_ANNOTATION] == "example/foo"
        assert cache.has(manifest.config.digest)
        assert cache.has(layer.digest)

    def test_identical_archives_identical_manifests(self, tmp_path):
        first = build_manifest(BlobCache(tmp_path / "c1"), example_archive(tmp_path / "a"))
        second = build_manifest(BlobCache(tmp_path / "c2"), example_archive(tmp_path / "b"))

        assert first.to_bytes() == second.to_bytes()
        assert first.digest == second.digest

    def test_manifest_bytes_are_canonical(self, tmp_path, cache):
        manifest = build_manifest(cache, example_archive(tmp_path / "a"))
        data = manifest.to_bytes()
        doc = json.loads(data)

        assert "digest" not in doc
        assert doc["schemaVersion"] == 2
        assert data == json.dumps(doc, sort_keys=True, separators=(",", ":")).encode()
        assert OCIManifest.from_bytes(data) == manifest

    def test_layers_follow_descriptor_order(self, tmp_path, cache):
        blobs = {f"f{i}": f"content-{i}".encode() for i in range(6)}
        write_archive(
            tmp_path / "a",
            blobs=blobs,
            resources=[local_resource(f"r{i}", f"f{i}", type_="json") for i in range(4)],
            sources=[local_resource(f"s{i}", f"f{i}", type_="plainText") for i in (4, 5)],
        )
        archive = ComponentArchive.from_path(tmp_path / "a")

        manifest = build_manifest(cache, archive, max_workers=4)

        titles = [layer.annotations[TITLE_ANNOTATION] for layer in manifest.layers]
        assert titles == ["r0", "r1", "r2", "r3", "s4", "s5"]
        assert [layer.media_type for layer in manifest.layers] == ["application/json"] * 4 + ["text/plain"] * 2

    def test_shared_file_one_digest(self, tmp_path, cache):
        write_archive(
            tmp_path / "a",
            blobs={"shared": b"same bytes"},
            resources=[local_resource("a", "shared"), local_resource("b", "shared")],
        )
        manifest = build_manifest(cache, ComponentArchive.from_path(tmp_path / "a"))

        assert len(manifest.layers) == 2
        assert manifest.layers[0].digest == manifest.layers[1].digest
        assert manifest.blob_digests() == [manifest.config.digest, manifest.layers[0].digest]

    def test_media_type_override(self, tmp_path, cache):
        write_archive(
            tmp_path / "a",
            blobs={"chart": b"chart"},
            resources=[local_resource("chart", "chart", type_="helm", media_type="application/x-custom")],
        )
        manifest = build_manifest(cache, ComponentArchive.from_path(tmp_path / "a"))
        assert manifest.layers[0].media_type == "application/x-custom"

    def test_external_entries_never_touched(self, tmp_path, cache, monkeypatch):
        write_archive(
            tmp_path / "a",
            blobs={"bin": b"bin"},
            resources=[local_resource("bin", "bin"), external_resource("img", "reg.io/img:1")],
        )
        archive = ComponentArchive.from_path(tmp_path / "a")
        opened = []
        original = cache.add_file
        monkeypatch.setattr(cache, "add_file", lambda path, **kw: opened.append(path) or original(path, **kw))

        manifest = build_manifest(cache, archive)

        assert len(manifest.layers) == 1
        assert opened == [archive.blob_path("bin")]

    def test_local_entry_without_blob_access_rejected_at_load(self, tmp_path):
        resource = external_resource("img", "reg.io/img:1")
        resource["relation"] = "local"
        write_archive(tmp_path / "a", resources=[resource])

        with pytest.raises(StructuralError, match="unsupported access type"):
            ComponentArchive.from_path(tmp_path / "a")

    def test_local_entry_changed_in_memory(self, tmp_path, cache):
        archive = example_archive(tmp_path / "a")
        resource = archive.descriptor.resources[0]
        archive.descriptor.resources[0] = resource.model_copy(
            update={"access": OCIRegistryAccess(image_reference="reg.io/img:1")}
        )

        with pytest.raises(ManifestBuildError, match="unsupported access type"):
            build_manifest(cache, archive)

    def test_empty_blob_is_zero_length_layer(self, tmp_path, cache):
        write_archive(tmp_path / "a", blobs={"empty": b""}, resources=[local_resource("empty", "empty")])
        archive = ComponentArchive.from_path(tmp_path / "a")

        manifest = build_manifest(cache, archive)

        assert len(manifest.layers) == 1
        assert manifest.layers[0].size == 0
        assert manifest.layers[0].digest == compute_digest(b"")
        assert cache.get(compute_digest(b"")) == b""

    def test_blob_removed_after_load(self, tmp_path, cache):
        archive = example_archive(tmp_path / "a")
        (archive.blob_dir / "cli-binary-linux").unlink()

        with pytest.raises(BlobReadError) as exc_info:
            build_manifest(cache, archive)
        assert exc_info.value.component == "example/foo:1.0.0"

    def test_cancelled_before_start(self, tmp_path, cache):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            build_manifest(cache, example_archive(tmp_path / "a"), cancel=cancel)
        assert not cache.base_path.exists()
