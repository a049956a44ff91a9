"""
Component descriptor codec.

Decodes YAML/JSON descriptor documents into ComponentDescriptor models and
encodes them back, either as YAML for the archive's descriptor file or as
canonical JSON for the OCI config blob. Canonical JSON uses sorted keys and
no whitespace so identical descriptors always produce identical bytes.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import InvalidDescriptor, SerializationError
from .models import ComponentDescriptor

__all__ = ["decode", "to_document", "encode_yaml", "encode_canonical_json"]


def decode(data: Union[bytes, str]) -> ComponentDescriptor:
    """
    Decode a descriptor document.

    Accepts the nested ``meta``/``component`` layout as well as a flat
    mapping of component fields.

    Raises:
        InvalidDescriptor: If the document is not valid YAML or does not
            match the descriptor schema
    """
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise InvalidDescriptor(f"descriptor is not valid YAML: {e}") from e

    if not isinstance(doc, dict):
        raise InvalidDescriptor("descriptor must be a mapping")

    if "component" in doc:
        component = doc.get("component")
        if not isinstance(component, dict):
            raise InvalidDescriptor("'component' must be a mapping")
        meta = doc.get("meta") or {}
        fields = dict(component)
        if "schemaVersion" in meta:
            fields["schemaVersion"] = meta["schemaVersion"]
    else:
        fields = doc

    try:
        return ComponentDescriptor.model_validate(fields)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"])
        raise InvalidDescriptor(
            f"invalid component descriptor at '{location}': {first['msg']}"
        ) from e


def to_document(descriptor: ComponentDescriptor) -> Dict[str, Any]:
    """Convert a descriptor into its nested document form."""
    component = descriptor.model_dump(by_alias=True, exclude_none=True, mode="json")
    schema_version = component.pop("schemaVersion")
    return {"meta": {"schemaVersion": schema_version}, "component": component}


def encode_yaml(descriptor: ComponentDescriptor) -> bytes:
    """Encode a descriptor as YAML for the archive's descriptor file."""
    try:
        text = yaml.safe_dump(to_document(descriptor), sort_keys=True, default_flow_style=False)
    except yaml.YAMLError as e:
        raise SerializationError(f"unable to encode descriptor: {e}",
                                 component=descriptor.identity, operation="encode") from e
    return text.encode("utf-8")


def encode_canonical_json(descriptor: ComponentDescriptor) -> bytes:
    """
    Encode a descriptor as canonical JSON.

    Raises:
        SerializationError: If a label value cannot be represented as JSON
    """
    try:
        canonical = json.dumps(
            to_document(descriptor),
            sort_keys=True,
            separators=(',', ':'),
            ensure_ascii=True
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(f"unable to serialize descriptor: {e}",
                                 component=descriptor.identity, operation="serialize") from e
    return canonical.encode("utf-8")
