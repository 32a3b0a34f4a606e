"""
Identity of a kubernetes object that is managed by the operator
"""
# Standard
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ResourceIdentity:
    """Unique key of a single object in the store. Equality and hashing use
    only (kind, namespace, name). The api_version is carried along so the live
    store can discover the right resource handle.
    """

    kind: str
    name: str
    namespace: Optional[str] = None
    api_version: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_definition(cls, definition: dict) -> "ResourceIdentity":
        """Pull the identity out of a manifest"""
        metadata = definition.get("metadata") or {}
        kind = definition.get("kind")
        name = metadata.get("name")
        assert kind is not None, "No kind found"
        assert name is not None, "No name found"
        return cls(
            kind=kind,
            name=name,
            namespace=metadata.get("namespace"),
            api_version=definition.get("apiVersion"),
        )

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"
