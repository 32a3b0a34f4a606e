"""
This ObjectStore is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from contextlib import contextmanager
from typing import Optional
import copy

# Third Party
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import exceptions
from ..exceptions import assert_store
from ..managed_object import ResourceIdentity
from .base import ObjectStoreBase

log = alog.use_channel("OSFTS")

# Status codes that are expected to resolve on a later pass
TRANSIENT_STATUS_CODES = [408, 429, 500, 502, 503, 504]

FIELD_MANAGER = "apimanager-operator"


class OpenshiftObjectStore(ObjectStoreBase):
    """This ObjectStore uses the openshift DynamicClient to interact with the
    cluster. Updates are sent as full replacements (PUT) carrying the
    resourceVersion they were read at so that the API server rejects writes
    based on a stale read.
    """

    def __init__(self, client: Optional[DynamicClient] = None):
        """
        Args:
            client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created on first
                use from the in-cluster config or the local kubeconfig.
        """
        log.debug("Initializing openshift client")
        self._client = client

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    @alog.logged_function(log.debug2)
    def get(self, identity: ResourceIdentity) -> dict:
        handle = self._get_resource_handle(identity.kind, identity.api_version)
        log.debug2("Fetching [%s]", identity)
        with self._translate_errors(identity):
            return handle.get(
                name=identity.name, namespace=identity.namespace
            ).to_dict()

    @alog.logged_function(log.debug2)
    def create(self, definition: dict) -> dict:
        identity = ResourceIdentity.from_definition(definition)
        handle = self._get_resource_handle(identity.kind, identity.api_version)
        log.debug2("Creating [%s]", identity)
        with self._translate_errors(identity, on_conflict=exceptions.AlreadyExistsError):
            return handle.create(
                body=copy.deepcopy(definition),
                namespace=identity.namespace,
                field_manager=FIELD_MANAGER,
            ).to_dict()

    @alog.logged_function(log.debug2)
    def update(self, definition: dict) -> dict:
        identity = ResourceIdentity.from_definition(definition)
        assert_store(
            definition.get("metadata", {}).get("resourceVersion"),
            f"Refusing to update {identity} without a resourceVersion",
        )
        handle = self._get_resource_handle(identity.kind, identity.api_version)

        # Strip out managedFields to let the server set them
        body = copy.deepcopy(definition)
        body["metadata"].pop("managedFields", None)

        log.debug2("Replacing [%s]", identity)
        with self._translate_errors(identity):
            return handle.replace(
                body=body,
                name=identity.name,
                namespace=identity.namespace,
                field_manager=FIELD_MANAGER,
            ).to_dict()

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")

            # Create Empty Config and load in-cluster information
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)

            # Generate ApiClient and return Openshift DynamicClient
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Resource:
        """Get the openshift resource handle for a specified kind and
        api_version. Falls back to looking the kind up as a short name.
        """
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            try:
                return self.client.resources.get(
                    short_names=[kind], api_version=api_version
                )
            except (ResourceNotFoundError, ResourceNotUniqueError) as err:
                log.debug(
                    "No objects of kind [%s] found or multiple objects matching request found",
                    kind,
                )
                raise exceptions.StoreError(
                    f"Failed to fetch resource handle for {api_version}/{kind}"
                ) from err
        except urllib3.exceptions.HTTPError as err:
            raise exceptions.TransientStoreError(
                f"Discovery failed for {api_version}/{kind}: {err}"
            ) from err

    @staticmethod
    @contextmanager
    def _translate_errors(
        identity: ResourceIdentity, on_conflict: type = exceptions.ConflictError
    ):
        """Context manager re-raising openshift and urllib3 errors as operator
        errors
        """
        try:
            yield
        except NotFoundError as err:
            raise exceptions.NotFoundError(f"{identity} not found") from err
        except ConflictError as err:
            log.debug("Conflict on [%s]: %s", identity, err.summary())
            raise on_conflict(f"{identity}: {err.summary()}") from err
        except DynamicApiError as err:
            if err.status in TRANSIENT_STATUS_CODES:
                raise exceptions.TransientStoreError(
                    f"{identity}: {err.summary()}"
                ) from err
            raise exceptions.StoreError(f"{identity}: {err.summary()}") from err
        except urllib3.exceptions.HTTPError as err:
            raise exceptions.TransientStoreError(f"{identity}: {err}") from err
