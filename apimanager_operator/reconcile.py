"""
The ReconcileManager class manages an individual reconciliation pass of an
APIManager. It sets up logging, picks the object store, and runs the component
reconcilers.
"""

# Standard
from threading import Event
from typing import Optional, Union
import base64
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants
from .components import BackendReconciler, PassResult, RequeueParams
from .exceptions import assert_spec
from .log_format import ApiManagerJsonFormatter
from .store import DryRunObjectStore, ObjectStoreBase, OpenshiftObjectStore

log = alog.use_channel("RECONCILE")


## ReconcileManager ############################################################


class ReconcileManager:
    """This class manages reconciliations of APIManager resources. Its primary
    function is to run a pass given a CR manifest and the current cluster state
    via an ObjectStore.
    """

    def __init__(self, store: Optional[ObjectStoreBase] = None):
        """
        Args:
            store:  Optional[ObjectStoreBase]
                Object store to use. If not given, a new store is created for
                each pass based on the dry_run config.
        """
        self.store = store

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(
        self,
        resource: Union[dict, aconfig.Config],
        cancel_event: Optional[Event] = None,
    ) -> PassResult:
        """This is the main entrypoint for a pass. The general path is:

            1. Parse the raw CR manifest
            2. Setup logging based on config with overrides from the CR
            3. Validate the required sections of the CR
            4. Setup the ObjectStore
            5. Run the component reconcilers

        Args:
            resource:  Union[dict, aconfig.Config]
                A raw representation of the APIManager to reconcile
            cancel_event:  Optional[Event]
                When set, the pass stops before its next store call

        Returns:
            pass_result:  PassResult
                The outcomes of the pass and its first error, if any
        """
        cr_manifest = self.parse_manifest(resource)

        # generate id unique to this pass
        reconciliation_id = self.generate_id()

        # Initialize logging prior to any other work
        self.configure_logging(cr_manifest, reconciliation_id)

        self.validate_manifest(cr_manifest)
        store = self.setup_store()

        result = BackendReconciler(store, cr_manifest, cancel_event).reconcile()
        result.reconciliation_id = reconciliation_id
        if result.succeeded:
            log.info(
                "Pass %s converged %d objects (changed: %s)",
                reconciliation_id,
                len(result.outcomes),
                result.changed,
            )
        else:
            log.warning("Pass %s failed: %s", reconciliation_id, result.error)
        return result

    def safe_reconcile(
        self,
        resource: Union[dict, aconfig.Config],
        cancel_event: Optional[Event] = None,
    ) -> PassResult:
        """
        This function calls out to reconcile but catches any errors thrown. This
        function guarantees a safe result which is needed by the scheduler

        Args:
            resource:  Union[dict, aconfig.Config]
                A raw representation of the APIManager to reconcile
            cancel_event:  Optional[Event]
                When set, the pass stops before its next store call

        Returns:
            pass_result:  PassResult
                The result of the pass. Errors are held in the result.
        """
        try:
            return self.reconcile(resource, cancel_event)

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            log.info("Requeuing CR due to error during reconcile")
            return PassResult(
                error=exc, requeue=True, requeue_params=RequeueParams()
            )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource: Union[dict, aconfig.Config])
                The resource to be parsed into a manifest

        Returns
            cr_manifest: aconfig.Config
                The parsed config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse APIManager") from exc

        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given pass

        Args:
            cr_manifest: aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id: str
                The unique id for the pass
        """

        # Safe fetching since this happens before the manifest is validated
        annotations = (cr_manifest.get("metadata") or {}).get("annotations") or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_json = (log_json or "").lower() == "true"

        # Keep the old handler so that output keeps going wherever it was
        # configured to go
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=ApiManagerJsonFormatter(cr_manifest, reconciliation_id)
            if log_json
            else "pretty",
            thread_id=config.log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this pass

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconciliation_id = base32_str[:22]
        log.debug("Generated reconciliation id: %s", reconciliation_id)
        return reconciliation_id

    @classmethod
    def validate_manifest(cls, cr_manifest: aconfig.Config):
        """Make sure the manifest is an APIManager with the sections every
        component depends on
        """
        assert_spec(
            cr_manifest.get("kind") == constants.APIMANAGER_KIND,
            f"Expected kind {constants.APIMANAGER_KIND}, got {cr_manifest.get('kind')}",
        )
        metadata = cr_manifest.get("metadata")
        assert_spec(isinstance(metadata, dict), "APIManager has no metadata")
        assert_spec(metadata.get("name"), "APIManager has no name")
        assert_spec(metadata.get("namespace"), "APIManager has no namespace")
        assert_spec(isinstance(cr_manifest.get("spec"), dict), "APIManager has no spec")

    def setup_store(self) -> ObjectStoreBase:
        """Get the store for a pass. The one given at construction wins,
        otherwise the dry_run config decides.
        """
        if self.store is not None:
            return self.store

        if config.dry_run:
            log.debug("Using DryRunObjectStore")
            return DryRunObjectStore()

        log.debug("Using OpenshiftObjectStore")
        return OpenshiftObjectStore()
