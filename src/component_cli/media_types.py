"""
OCI media types and constants.

Single source of truth for the media types used when a component archive is
materialized as an OCI artifact.
"""
from __future__ import annotations

from typing import Optional

OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"

# Config blob: the serialized component descriptor
COMPONENT_DESCRIPTOR_CONFIG = "application/vnd.gardener.cloud.cnudie.component-descriptor.v2+json"

OCI_GENERIC_LAYER = "application/octet-stream"

# Layer media type per resource type
RESOURCE_TYPE_MEDIA_TYPES = {
    "executable": "application/octet-stream",
    "ociImage": "application/vnd.oci.image.layer.v1.tar",
    "helm": "application/vnd.cncf.helm.chart.content.v1.tar+gzip",
    "helm.io/chart": "application/vnd.cncf.helm.chart.content.v1.tar+gzip",
    "json": "application/json",
    "yaml": "application/x-yaml",
    "plainText": "text/plain",
    "directoryTree": "application/x-tar",
    "fileSystem": "application/x-tar",
}

TITLE_ANNOTATION = "org.opencontainers.image.title"
COMPONENT_NAME_ANNOTATION = "cloud.gardener.cnudie/component-name"
COMPONENT_VERSION_ANNOTATION = "cloud.gardener.cnudie/component-version"

ACCEPTED_MANIFEST_TYPES = [OCI_IMAGE_MANIFEST, DOCKER_MANIFEST_V2]


def media_type_for(resource_type: str, override: Optional[str] = None) -> str:
    """
    Media type of the layer produced for a resource.

    An explicit media type on the access wins; unknown resource types fall
    back to the generic octet-stream type.
    """
    if override:
        return override
    return RESOURCE_TYPE_MEDIA_TYPES.get(resource_type, OCI_GENERIC_LAYER)


__all__ = [
    "OCI_IMAGE_MANIFEST",
    "DOCKER_MANIFEST_V2",
    "COMPONENT_DESCRIPTOR_CONFIG",
    "OCI_GENERIC_LAYER",
    "RESOURCE_TYPE_MEDIA_TYPES",
    "TITLE_ANNOTATION",
    "COMPONENT_NAME_ANNOTATION",
    "COMPONENT_VERSION_ANNOTATION",
    "ACCEPTED_MANIFEST_TYPES",
    "media_type_for",
]
