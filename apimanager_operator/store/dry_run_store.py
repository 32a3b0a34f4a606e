"""
The DryRunObjectStore implements the ObjectStore interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime
from threading import RLock
from typing import Iterable, List, Optional
import copy
import itertools
import uuid

# First Party
import alog

# Local
from ..exceptions import AlreadyExistsError, ConflictError, NotFoundError
from ..managed_object import ResourceIdentity
from .base import ObjectStoreBase

log = alog.use_channel("DRY-RUN")


class DryRunObjectStore(ObjectStoreBase):
    """
    Object store which doesn't actually talk to a cluster!

    Every write bumps a single store-wide counter that is used as the new
    resourceVersion, so versions are strictly increasing and an update
    carrying any other version is rejected as a conflict.
    """

    def __init__(self, resources: Optional[Iterable[dict]] = None):
        """Construct with an optional set of objects to pre-populate the
        cluster with
        """
        self._cluster_content = {}
        self._lock = RLock()
        self._versions = itertools.count(1)
        for resource in resources or []:
            self._put(copy.deepcopy(resource), creating=True)

    ## Interface ###############################################################

    def get(self, identity: ResourceIdentity) -> dict:
        log.debug2("DRY RUN get [%s]", identity)
        with self._lock:
            current = self._entries(identity.namespace, identity.kind).get(
                identity.name
            )
            if current is None:
                raise NotFoundError(f"{identity} not found")
            return copy.deepcopy(current)

    def create(self, definition: dict) -> dict:
        identity = ResourceIdentity.from_definition(definition)
        log.info("DRY RUN create [%s]", identity)
        with self._lock:
            if identity.name in self._entries(identity.namespace, identity.kind):
                raise AlreadyExistsError(f"{identity} already exists")
            return copy.deepcopy(self._put(copy.deepcopy(definition), creating=True))

    def update(self, definition: dict) -> dict:
        identity = ResourceIdentity.from_definition(definition)
        log.info("DRY RUN update [%s]", identity)
        with self._lock:
            current = self._entries(identity.namespace, identity.kind).get(
                identity.name
            )
            if current is None:
                raise NotFoundError(f"{identity} not found")

            current_version = current["metadata"]["resourceVersion"]
            given_version = definition.get("metadata", {}).get("resourceVersion")
            if given_version != current_version:
                log.debug(
                    "Stale resourceVersion for [%s]: %s != %s",
                    identity,
                    given_version,
                    current_version,
                )
                raise ConflictError(
                    f"{identity} has been modified: resourceVersion {given_version} "
                    f"!= {current_version}"
                )

            resource = copy.deepcopy(definition)
            metadata = resource.setdefault("metadata", {})
            metadata["uid"] = current["metadata"]["uid"]
            metadata["creationTimestamp"] = current["metadata"]["creationTimestamp"]
            return copy.deepcopy(self._put(resource, creating=False))

    ## Dry Run Methods #########################################################

    def list_objects(
        self, kind: Optional[str] = None, namespace: Optional[str] = None
    ) -> List[dict]:
        """List deep copies of all stored objects, optionally filtered by kind
        and namespace
        """
        with self._lock:
            return [
                copy.deepcopy(resource)
                for ns, kinds in self._cluster_content.items()
                if namespace is None or ns == namespace
                for knd, entries in kinds.items()
                if kind is None or knd == kind
                for resource in entries.values()
            ]

    ## Implementation Details ##################################################

    def _entries(self, namespace: Optional[str], kind: str) -> dict:
        return self._cluster_content.get(namespace, {}).get(kind, {})

    def _put(self, resource: dict, creating: bool) -> dict:
        identity = ResourceIdentity.from_definition(resource)
        metadata = resource.setdefault("metadata", {})
        if creating:
            metadata["uid"] = metadata.get("uid") or str(uuid.uuid4())
            metadata["creationTimestamp"] = metadata.get(
                "creationTimestamp", datetime.now().isoformat()
            )
        metadata["resourceVersion"] = str(next(self._versions))
        log.debug3(
            "Storing [%s] at resourceVersion %s", identity, metadata["resourceVersion"]
        )
        self._cluster_content.setdefault(identity.namespace, {}).setdefault(
            identity.kind, {}
        )[identity.name] = resource
        return resource
