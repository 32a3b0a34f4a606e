"""
Translation of the APIManager spec into the options the backend objects are
built from
"""

# Standard
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Dict, List, Optional
import base64
import binascii
import copy
import secrets
import string

# First Party
import alog

# Local
from .. import config, constants
from ..exceptions import (
    InvalidSpecError,
    NotFoundError,
    ReconcileCancelledError,
    assert_spec,
)
from ..managed_object import ResourceIdentity
from ..store import ObjectStoreBase
from ..utils import nested_get

log = alog.use_channel("BKND")

APP_LABEL = "3scale-api-management"
PASSWORD_LENGTH = 8

# Resource requirements used when the spec doesn't give any
DEFAULT_RESOURCES = {
    "cron": {
        "limits": {"cpu": "150m", "memory": "150Mi"},
        "requests": {"cpu": "50m", "memory": "40Mi"},
    },
    "listener": {
        "limits": {"cpu": "1", "memory": "700Mi"},
        "requests": {"cpu": "500m", "memory": "550Mi"},
    },
    "worker": {
        "limits": {"cpu": "1", "memory": "300Mi"},
        "requests": {"cpu": "150m", "memory": "50Mi"},
    },
}


@dataclass
class WorkloadOptions:
    """Per-workload (cron, listener, worker) scheduling options"""

    replicas: int
    resources: Dict[str, Any]
    affinity: Optional[Dict[str, Any]] = None
    tolerations: Optional[List[Dict[str, Any]]] = None
    priority_class_name: Optional[str] = None
    topology_spread_constraints: Optional[List[Dict[str, Any]]] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class BackendOptions:
    """Everything needed to build the backend objects. Building from the same
    options always yields the same objects.
    """

    namespace: str
    wildcard_domain: str
    tenant_name: str
    image: str
    listener_port: int
    pdb_max_unavailable: int
    internal_api_username: str
    internal_api_password: str
    redis_async: bool
    cron: WorkloadOptions
    listener: WorkloadOptions
    worker: WorkloadOptions

    @property
    def route_endpoint(self) -> str:
        return f"https://backend-{self.tenant_name}.{self.wildcard_domain}"

    @property
    def service_endpoint(self) -> str:
        return f"http://backend-listener.{self.namespace}.svc:{self.listener_port}"

    @property
    def common_labels(self) -> Dict[str, str]:
        return {"app": APP_LABEL, "threescale_component": "backend"}


class BackendOptionsProvider:
    """Reads the APIManager spec, the library config defaults and the backend
    secrets already in the cluster
    """

    def __init__(
        self,
        apimanager: dict,
        store: ObjectStoreBase,
        cancel_event: Optional[Event] = None,
    ):
        self.apimanager = apimanager
        self.store = store
        self.cancel_event = cancel_event
        self.namespace = nested_get(apimanager, "metadata.namespace")

    @alog.logged_function(log.debug2)
    def get_backend_options(self) -> BackendOptions:
        """Build the options, raising InvalidSpecError on an invalid spec and
        propagating store errors other than a missing secret
        """
        assert_spec(self.namespace, "APIManager has no namespace")
        wildcard_domain = nested_get(self.apimanager, "spec.wildcardDomain")
        assert_spec(
            isinstance(wildcard_domain, str) and wildcard_domain,
            "spec.wildcardDomain is required",
        )

        image = (
            nested_get(self.apimanager, "spec.backend.image") or config.backend.image
        )
        assert_spec(isinstance(image, str), "spec.backend.image must be a string")

        return BackendOptions(
            namespace=self.namespace,
            wildcard_domain=wildcard_domain,
            tenant_name=nested_get(self.apimanager, "spec.tenantName")
            or config.backend.tenant_name,
            image=image,
            listener_port=config.backend.listener_port,
            pdb_max_unavailable=config.backend.pdb_max_unavailable,
            internal_api_username=config.backend.internal_api_user,
            internal_api_password=self._internal_api_password(),
            redis_async=self._redis_async(),
            cron=self._workload_options("cron"),
            listener=self._workload_options("listener"),
            worker=self._workload_options("worker"),
        )

    ## Implementation Details ##################################################

    def _workload_options(self, workload: str) -> WorkloadOptions:
        workload_spec = (
            nested_get(self.apimanager, f"spec.backend.{workload}Spec") or {}
        )
        assert_spec(
            isinstance(workload_spec, dict),
            f"spec.backend.{workload}Spec must be an object",
        )

        # Explicit replicas only feed the desired count. Whether the count is
        # synced is decided by the ownership annotations.
        replicas = workload_spec.get("replicas")
        if replicas is None:
            replicas = config.backend.default_replicas
        assert_spec(
            isinstance(replicas, int)
            and not isinstance(replicas, bool)
            and replicas >= 0,
            f"spec.backend.{workload}Spec.replicas must be a non-negative integer",
        )

        return WorkloadOptions(
            replicas=replicas,
            resources=copy.deepcopy(
                workload_spec.get("resources") or DEFAULT_RESOURCES[workload]
            ),
            affinity=workload_spec.get("affinity"),
            tolerations=workload_spec.get("tolerations"),
            priority_class_name=workload_spec.get("priorityClassName"),
            topology_spread_constraints=workload_spec.get("topologySpreadConstraints"),
            labels=dict(workload_spec.get("labels") or {}),
            annotations=dict(workload_spec.get("annotations") or {}),
        )

    def _read_secret(self, name: str) -> Optional[Dict[str, str]]:
        """Get the decoded data of a secret or None if it doesn't exist"""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ReconcileCancelledError(f"Lookup of secret {name} cancelled")
        try:
            secret = self.store.get(
                ResourceIdentity(
                    kind="Secret",
                    name=name,
                    namespace=self.namespace,
                    api_version="v1",
                )
            )
        except NotFoundError:
            log.debug2("Secret [%s] not found", name)
            return None
        decoded = {}
        for key, val in (secret.get("data") or {}).items():
            if not val:
                continue
            try:
                decoded[key] = base64.b64decode(val).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as err:
                raise InvalidSpecError(
                    f"Secret {name} has an undecodable value for {key}: {err}"
                ) from err
        return decoded

    def _internal_api_password(self) -> str:
        """Reuse the existing password so the desired secret is stable, or
        generate a new one
        """
        current = self._read_secret(constants.BACKEND_INTERNAL_API_SECRET_NAME) or {}
        if password := current.get("password"):
            return password
        log.debug("Generating backend internal API password")
        alphabet = string.ascii_letters + string.digits
        return "".join(secrets.choice(alphabet) for _ in range(PASSWORD_LENGTH))

    def _redis_async(self) -> bool:
        """Async mode is on when storage and queues point at different
        databases. A missing secret means async is off.
        """
        data = self._read_secret(constants.BACKEND_REDIS_SECRET_NAME)
        if data is None:
            return False
        storage_url = data.get("REDIS_STORAGE_URL", "").removesuffix("0")
        queues_url = data.get("REDIS_QUEUES_URL", "").removesuffix("1")
        log.debug3("Storage [%s] vs queues [%s]", storage_url, queues_url)
        return storage_url != queues_url
