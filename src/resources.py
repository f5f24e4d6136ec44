"""
Resource data model - watched custom resources and their change events.

Mirrors the shape of Kubernetes watch events so that any watch source can
hand the dispatcher a typed event.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def _mapping(data: Any, field_name: str) -> Dict[str, Any]:
    """``data`` as a dict; missing or null values become empty."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Resource {field_name} must be a JSON object")
    return dict(data)


class WatchEventType(Enum):
    """Types of resource lifecycle events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ResourceMetadata:
    """Identity and lifecycle metadata of a resource."""

    name: str = "unknown"
    namespace: str = "default"
    uid: Optional[str] = None
    generation: int = 0
    deletion_timestamp: Optional[str] = None
    resource_version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceMetadata":
        """Parse Kubernetes metadata; a non-mapping raises ValueError."""
        data = _mapping(data, "metadata")
        return cls(
            name=data.get("name") or "unknown",
            namespace=data.get("namespace") or "default",
            uid=data.get("uid"),
            generation=data.get("generation") or 0,
            deletion_timestamp=data.get("deletionTimestamp"),
            resource_version=data.get("resourceVersion"),
        )


@dataclass
class ResourceObject:
    """
    A watched custom resource.

    ``spec`` and ``status`` are opaque, domain-defined dictionaries.
    ``status`` is empty when the resource has never been reconciled.
    """

    metadata: ResourceMetadata = field(default_factory=ResourceMetadata)
    spec: Dict[str, Any] = field(default_factory=dict)
    status: Dict[str, Any] = field(default_factory=dict)
    api_version: Optional[str] = None
    kind: Optional[str] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def is_deleting(self) -> bool:
        """True when the resource carries a deletion timestamp."""
        return self.metadata.deletion_timestamp is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceObject":
        """
        Build a resource from its Kubernetes JSON representation.

        Args:
            data: Object dict with ``metadata``, ``spec`` and ``status`` keys.

        Returns:
            A new ResourceObject instance.

        Raises:
            ValueError: If ``data``, or its metadata, spec or status, is not
                a mapping.
        """
        if not isinstance(data, dict):
            raise ValueError("Resource object must be a JSON object")
        return cls(
            metadata=ResourceMetadata.from_dict(data.get("metadata")),
            spec=_mapping(data.get("spec"), "spec"),
            status=_mapping(data.get("status"), "status"),
            api_version=data.get("apiVersion"),
            kind=data.get("kind"),
        )


@dataclass(frozen=True)
class ResourceEvent:
    """Notification that a watched resource was added, modified or deleted."""

    event_type: WatchEventType
    resource: ResourceObject

    @property
    def key(self) -> str:
        """``namespace/name`` of the affected resource."""
        return f"{self.resource.namespace}/{self.resource.name}"

    @classmethod
    def from_watch(cls, data: Dict[str, Any]) -> "ResourceEvent":
        """
        Parse a watch event of the form ``{"type": ..., "object": {...}}``.

        Raises:
            ValueError: If the type is not ADDED, MODIFIED or DELETED, or the
                object is missing.
        """
        if not isinstance(data, dict):
            raise ValueError("Watch event must be a JSON object")
        raw_type = data.get("type")
        try:
            event_type = WatchEventType(raw_type)
        except ValueError:
            raise ValueError(f"Unsupported watch event type: {raw_type!r}")
        if "object" not in data:
            raise ValueError("Watch event has no object")
        return cls(
            event_type=event_type,
            resource=ResourceObject.from_dict(data["object"]),
        )
