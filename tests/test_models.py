"""
Test component descriptor models and the descriptor codec.
"""
from __future__ import annotations

import json

import pytest

from component_cli.codec import decode, encode_canonical_json, encode_yaml
from component_cli.errors import InvalidDescriptor, SerializationError
from component_cli.models import (
    ComponentDescriptor,
    Label,
    LocalFilesystemBlobAccess,
    OCIRegistryAccess,
    Relation,
    Resource,
    WebAccess,
)

DOC = """
meta:
  schemaVersion: v2
component:
  name: example/foo
  version: 1.0.0
  provider: internal
  repositoryContexts:
  - type: ociRegistry
    baseUrl: https://example-registry.io/components/
  resources:
  - name: cli-binary-linux
    version: 1.0.0
    type: executable
    relation: local
    access:
      type: localFilesystemBlob
      filename: cli-binary-linux
  - name: image
    version: 1.0.0
    type: ociImage
    relation: external
    access:
      type: ociRegistry
      imageReference: example-registry.io/image:1.0.0
  sources:
  - name: repo
    type: git
    relation: external
    access:
      type: github
      repoUrl: github.com/example/foo
      commit: abc123
"""


class TestDecode:

    def test_nested_document(self):
        descriptor = decode(DOC)

        assert descriptor.identity == "example/foo:1.0.0"
        assert descriptor.effective_repository_context.base_url == "https://example-registry.io/components"
        assert isinstance(descriptor.resources[0].access, LocalFilesystemBlobAccess)
        assert isinstance(descriptor.resources[1].access, OCIRegistryAccess)
        assert descriptor.sources[0].access.commit == "abc123"

    def test_flat_document(self):
        descriptor = decode("name: example/bar\nversion: 2.0.0\n")
        assert descriptor.identity == "example/bar:2.0.0"
        assert descriptor.repository_contexts == []

    def test_local_entries_only_local(self):
        descriptor = decode(DOC)
        assert [(k, e.name) for k, e in descriptor.local_entries()] == [("resource", "cli-binary-linux")]

    @pytest.mark.parametrize("doc,location", [
        ("component:\n  version: 1.0.0\n", "name"),
        ("component:\n  name: a\n  version: ''\n", "version"),
        ("meta:\n  schemaVersion: v3\ncomponent:\n  name: a\n  version: '1'\n", "schemaVersion"),
    ])
    def test_schema_errors(self, doc, location):
        with pytest.raises(InvalidDescriptor, match=location):
            decode(doc)

    def test_unknown_access_type(self):
        doc = DOC.replace("type: localFilesystemBlob", "type: s3")
        with pytest.raises(InvalidDescriptor):
            decode(doc)

    def test_not_yaml(self):
        with pytest.raises(InvalidDescriptor):
            decode("component: [unclosed")

    def test_not_a_mapping(self):
        with pytest.raises(InvalidDescriptor):
            decode("- a\n- b\n")

    def test_duplicate_identity_rejected(self):
        resource = {
            "name": "r", "version": "1", "type": "json", "relation": "external",
            "access": {"type": "web", "url": "https://example.com/r"},
        }
        doc = json.dumps({"component": {"name": "a", "version": "1", "resources": [resource, resource]}})
        with pytest.raises(InvalidDescriptor, match="duplicate identity"):
            decode(doc)

    def test_extra_identity_distinguishes_entries(self):
        base = {"name": "r", "version": "1", "type": "json", "relation": "external",
                "access": {"type": "web", "url": "https://example.com/r"}}
        doc = json.dumps({"component": {"name": "a", "version": "1", "resources": [
            dict(base, extraIdentity={"os": "linux"}),
            dict(base, extraIdentity={"os": "darwin"}),
        ]}})
        assert len(decode(doc).resources) == 2


class TestEncode:

    def test_yaml_round_trip_preserves_descriptor(self):
        descriptor = decode(DOC)
        assert decode(encode_yaml(descriptor)) == descriptor

    def test_canonical_json_is_stable(self):
        a = encode_canonical_json(decode(DOC))
        b = encode_canonical_json(decode(DOC))
        assert a == b
        assert b", " not in a and b": " not in a
        doc = json.loads(a)
        assert doc["meta"] == {"schemaVersion": "v2"}
        assert list(doc["component"].keys()) == sorted(doc["component"].keys())

    def test_unserializable_label_raises(self):
        descriptor = ComponentDescriptor(name="a", version="1", labels=[Label(name="bad", value=object())])
        with pytest.raises(SerializationError):
            encode_canonical_json(descriptor)


class TestRepositoryContext:

    def test_append_makes_effective(self):
        descriptor = decode(DOC)
        assert descriptor.add_repository_context("https://other.io/base")
        assert descriptor.effective_repository_context.base_url == "https://other.io/base"
        assert len(descriptor.repository_contexts) == 2

    def test_append_same_context_is_noop(self):
        descriptor = decode(DOC)
        assert not descriptor.add_repository_context("https://example-registry.io/components")
        assert len(descriptor.repository_contexts) == 1


class TestResource:

    def test_identity_str(self):
        resource = Resource(
            name="r", version="1", type="json", relation=Relation.EXTERNAL,
            access=WebAccess(url="https://example.com"), extra_identity={"os": "linux"},
        )
        assert resource.identity_str == "r:1[os=linux]"
        assert not resource.is_local
