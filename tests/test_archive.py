"""
Test component archive loading, validation and mutation.
"""
from __future__ import annotations

import pytest

from component_cli.archive import ComponentArchive
from component_cli.codec import decode
from component_cli.errors import InvalidDescriptor, NotFoundError, StructuralError, ValidationError
from component_cli.models import LocalFilesystemBlobAccess, OCIRegistryAccess, Relation, Resource

from .helpers.archives import example_archive, external_resource, local_resource, write_archive


class TestLoad:

    def test_load_example(self, tmp_path):
        archive = example_archive(tmp_path / "a")
        assert archive.identity == "example/foo:1.0.0"
        assert archive.descriptor.resources[0].access.filename == "cli-binary-linux"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NotFoundError):
            ComponentArchive.from_path(tmp_path / "missing")

    def test_path_is_a_file(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("x")
        with pytest.raises(StructuralError, match="is not a directory"):
            ComponentArchive.from_path(path)

    def test_missing_descriptor(self, tmp_path):
        (tmp_path / "a").mkdir()
        with pytest.raises(NotFoundError):
            ComponentArchive.from_path(tmp_path / "a")

    def test_invalid_descriptor(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "component-descriptor.yaml").write_text("component:\n  name: x\n")
        with pytest.raises(InvalidDescriptor):
            ComponentArchive.from_path(tmp_path / "a")

    def test_missing_blob(self, tmp_path):
        write_archive(tmp_path / "a", resources=[local_resource("r", "missing.bin")])
        with pytest.raises(StructuralError, match="missing.bin"):
            ComponentArchive.from_path(tmp_path / "a")

    def test_blob_escaping_directory(self, tmp_path):
        (tmp_path / "secret").write_text("x")
        write_archive(tmp_path / "a", resources=[local_resource("r", "../../secret")])
        with pytest.raises(StructuralError):
            ComponentArchive.from_path(tmp_path / "a")

    def test_external_entries_need_no_blob(self, tmp_path):
        write_archive(tmp_path / "a", resources=[external_resource("img", "reg.io/img:1")])
        archive = ComponentArchive.from_path(tmp_path / "a")
        assert archive.descriptor.local_entries() == []

    def test_local_entry_with_registry_access(self, tmp_path):
        resource = external_resource("img", "reg.io/img:1")
        resource["relation"] = "local"
        write_archive(tmp_path / "a", resources=[resource])

        with pytest.raises(StructuralError, match="unsupported access type 'ociRegistry'"):
            ComponentArchive.from_path(tmp_path / "a")

    def test_external_entry_with_blob_access(self, tmp_path):
        resource = local_resource("bin", "bin")
        resource["relation"] = "external"
        write_archive(tmp_path / "a", blobs={"bin": b"bin"}, resources=[resource])

        with pytest.raises(ValidationError, match="external resource 'bin"):
            ComponentArchive.from_path(tmp_path / "a")


class TestCreateAndModify:

    def test_create(self, tmp_path):
        archive = ComponentArchive.create(tmp_path / "new", "example/new", "0.1.0")
        assert archive.blob_dir.is_dir()
        reloaded = ComponentArchive.from_path(tmp_path / "new")
        assert reloaded.identity == "example/new:0.1.0"

    def test_create_refuses_existing(self, tmp_path):
        ComponentArchive.create(tmp_path / "new", "a", "1")
        with pytest.raises(ValidationError):
            ComponentArchive.create(tmp_path / "new", "a", "1")

    def test_add_local_resource(self, tmp_path):
        archive = ComponentArchive.create(tmp_path / "new", "a", "1")
        src = tmp_path / "payload.bin"
        src.write_bytes(b"payload")

        stored = archive.add_resource(Resource(
            name="bin", version="1", type="executable", relation=Relation.LOCAL,
            access=LocalFilesystemBlobAccess(filename="payload.bin", media_type="application/x-bin"),
        ), src)

        assert stored.access.filename.startswith("sha256.")
        assert stored.access.media_type == "application/x-bin"
        assert (archive.blob_dir / stored.access.filename).read_bytes() == b"payload"
        reloaded = ComponentArchive.from_path(tmp_path / "new")
        assert reloaded.descriptor.resources == [stored]

    def test_add_local_resource_without_file(self, tmp_path):
        archive = ComponentArchive.create(tmp_path / "new", "a", "1")
        with pytest.raises(ValidationError):
            archive.add_resource(Resource(
                name="bin", type="executable", relation=Relation.LOCAL,
                access=LocalFilesystemBlobAccess(filename="x"),
            ))

    def test_replace_drops_unreferenced_blob(self, tmp_path):
        archive = ComponentArchive.create(tmp_path / "new", "a", "1")
        first = tmp_path / "v1"
        second = tmp_path / "v2"
        first.write_bytes(b"one")
        second.write_bytes(b"two")
        resource = Resource(name="bin", version="1", type="executable", relation=Relation.LOCAL,
                            access=LocalFilesystemBlobAccess(filename="x"))

        old = archive.add_resource(resource, first)
        new = archive.add_resource(resource, second)

        assert len(archive.descriptor.resources) == 1
        assert not (archive.blob_dir / old.access.filename).exists()
        assert (archive.blob_dir / new.access.filename).exists()

    def test_add_external_and_remove(self, tmp_path):
        archive = ComponentArchive.create(tmp_path / "new", "a", "1")
        archive.add_resource(Resource(
            name="img", version="1", type="ociImage", relation=Relation.EXTERNAL,
            access=OCIRegistryAccess(image_reference="reg.io/img:1"),
        ), kind="source")

        assert [s.name for s in archive.descriptor.sources] == ["img"]
        archive.remove_resource("img", "1", kind="source")
        assert decode(archive.descriptor_path.read_bytes()).sources == []

    def test_remove_unknown(self, tmp_path):
        archive = ComponentArchive.create(tmp_path / "new", "a", "1")
        with pytest.raises(NotFoundError):
            archive.remove_resource("nope")


class TestUnpack:

    def test_export_then_unpack(self, tmp_path):
        archive = example_archive(tmp_path / "a")
        unpacked = ComponentArchive.from_tar(archive.export("tar.zst"), tmp_path / "b")
        assert unpacked.descriptor == archive.descriptor
        assert (unpacked.blob_dir / "cli-binary-linux").read_bytes() == b"0123456789"

    def test_unpack_garbage(self, tmp_path):
        with pytest.raises(StructuralError):
            ComponentArchive.from_tar(b"not a tar archive at all" * 40, tmp_path / "b")
