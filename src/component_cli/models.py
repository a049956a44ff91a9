"""
Data models for component descriptors.

These Pydantic models give structure to the component descriptor document:
the component identity, its repository context history and the resources,
sources and component references it carries. Access methods are a tagged
variant discriminated by the ``type`` field.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

OCI_REGISTRY_TYPE = "ociRegistry"
SCHEMA_VERSION = "v2"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Relation(str, Enum):
    """Where the bytes of an entry live."""
    LOCAL = "local"
    EXTERNAL = "external"


class RepositoryContext(_Model):
    """Registry base location a component has been or will be published to."""
    type: Literal["ociRegistry"] = Field(default=OCI_REGISTRY_TYPE, description="Repository type")
    base_url: str = Field(..., alias="baseUrl", description="Registry base URL")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("baseUrl must not be empty")
        return v


class LocalFilesystemBlobAccess(_Model):
    """Blob stored in the archive's blob directory."""
    type: Literal["localFilesystemBlob"] = "localFilesystemBlob"
    filename: str = Field(..., description="Path relative to the blob directory")
    media_type: Optional[str] = Field(default=None, alias="mediaType")


class OCIRegistryAccess(_Model):
    """Artifact already stored in an OCI registry."""
    type: Literal["ociRegistry"] = "ociRegistry"
    image_reference: str = Field(..., alias="imageReference")


class WebAccess(_Model):
    """Artifact downloadable from a URL."""
    type: Literal["web"] = "web"
    url: str


class GitHubAccess(_Model):
    """Artifact living in a GitHub repository."""
    type: Literal["github"] = "github"
    repo_url: str = Field(..., alias="repoUrl")
    ref: Optional[str] = None
    commit: Optional[str] = None


Access = Annotated[
    Union[LocalFilesystemBlobAccess, OCIRegistryAccess, WebAccess, GitHubAccess],
    Field(discriminator="type"),
]


class Label(_Model):
    name: str
    value: Any = None


Identity = Tuple[str, str, Tuple[Tuple[str, str], ...]]


class Resource(_Model):
    """
    One artifact referenced by a component descriptor.

    Used for resources, sources and component references alike. The identity
    is ``(name, version, extraIdentity)`` and must be unique in its list.
    """
    name: str = Field(..., description="Entry name")
    version: Optional[str] = Field(default=None, description="Entry version")
    extra_identity: Dict[str, str] = Field(default_factory=dict, alias="extraIdentity")
    type: str = Field(..., description="Artifact kind (executable, ociImage, ...)")
    relation: Relation = Field(..., description="local or external")
    access: Access
    labels: List[Label] = Field(default_factory=list)

    @field_validator("name", "type")
    @classmethod
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

    @property
    def identity(self) -> Identity:
        return (self.name, self.version or "", tuple(sorted(self.extra_identity.items())))

    @property
    def identity_str(self) -> str:
        label = self.name if not self.version else f"{self.name}:{self.version}"
        if self.extra_identity:
            extra = ",".join(f"{k}={v}" for k, v in sorted(self.extra_identity.items()))
            label = f"{label}[{extra}]"
        return label

    @property
    def is_local(self) -> bool:
        return self.relation == Relation.LOCAL


def _check_unique(entries: List[Resource]) -> List[Resource]:
    seen = set()
    for entry in entries:
        if entry.identity in seen:
            raise ValueError(f"duplicate identity {entry.identity_str}")
        seen.add(entry.identity)
    return entries


class ComponentDescriptor(_Model):
    """
    Component descriptor (schema v2).

    The repository context list is append-only history; the effective
    context is always the last element.
    """
    schema_version: Literal["v2"] = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    name: str = Field(..., description="Component name")
    version: str = Field(..., description="Component version")
    provider: str = Field(default="internal", description="Component provider")
    repository_contexts: List[RepositoryContext] = Field(default_factory=list, alias="repositoryContexts")
    resources: List[Resource] = Field(default_factory=list)
    sources: List[Resource] = Field(default_factory=list)
    component_references: List[Resource] = Field(default_factory=list, alias="componentReferences")
    labels: List[Label] = Field(default_factory=list)

    @field_validator("name", "version")
    @classmethod
    def validate_identity(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("resources", "sources", "component_references")
    @classmethod
    def validate_unique_identities(cls, v):
        return _check_unique(v)

    @property
    def identity(self) -> str:
        return f"{self.name}:{self.version}"

    @property
    def effective_repository_context(self) -> Optional[RepositoryContext]:
        """Most recent repository context, or None if there is none."""
        if not self.repository_contexts:
            return None
        return self.repository_contexts[-1]

    def add_repository_context(self, base_url: str) -> bool:
        """
        Append a repository context, making it the effective one.

        Appending the context that is already effective is a no-op.

        Returns:
            True if the history grew
        """
        ctx = RepositoryContext(base_url=base_url)
        current = self.effective_repository_context
        if current is not None and current.base_url == ctx.base_url:
            return False
        self.repository_contexts.append(ctx)
        return True

    def iter_entries(self) -> Iterator[Tuple[str, Resource]]:
        """Yield (kind, entry) for resources, sources and references in order."""
        for resource in self.resources:
            yield "resource", resource
        for source in self.sources:
            yield "source", source
        for reference in self.component_references:
            yield "componentReference", reference

    def local_entries(self) -> List[Tuple[str, Resource]]:
        return [(kind, entry) for kind, entry in self.iter_entries() if entry.is_local]


__all__ = [
    "Relation",
    "RepositoryContext",
    "LocalFilesystemBlobAccess",
    "OCIRegistryAccess",
    "WebAccess",
    "GitHubAccess",
    "Access",
    "Label",
    "Resource",
    "ComponentDescriptor",
    "OCI_REGISTRY_TYPE",
    "SCHEMA_VERSION",
]
