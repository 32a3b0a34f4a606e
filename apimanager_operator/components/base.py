"""
Shared sequencing of per-object reconciles for one logical component of an
APIManager
"""

# Standard
from dataclasses import dataclass, field
from threading import Event
from typing import Callable, List, Optional, Tuple, Union
import abc
import datetime

# First Party
import alog

# Local
from .. import config
from ..exceptions import OperatorError
from ..managed_object import ResourceIdentity
from ..mutators import Mutator
from ..reconcile_object import ObjectReconciler, ReconcileOutcome
from ..store import ObjectStoreBase
from ..utils import nested_get

log = alog.use_channel("COMPT")

# A single step: (label, build_desired, mutator or list of mutators)
Step = Tuple[str, Callable[[], dict], Union[Mutator, List[Mutator]]]


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class PassResult:
    """PassResult is the aggregate result of one reconciliation pass"""

    # The outcome of each converged object, in reconcile order
    outcomes: List[Tuple[str, ResourceIdentity, ReconcileOutcome]] = field(
        default_factory=list
    )
    # The first error encountered. No steps run after it.
    error: Optional[Exception] = None
    # Flag to control requeue of current reconcile request
    requeue: bool = False
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Id of the pass, shared with the log lines it produced
    reconciliation_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def changed(self) -> bool:
        return any(
            outcome != ReconcileOutcome.UNCHANGED for _, _, outcome in self.outcomes
        )


## Base Reconciler #############################################################


class BaseComponentReconciler(abc.ABC):
    """Base class for reconcilers that converge the objects of one component.
    Steps run strictly in order and are not transactional: a failure leaves
    the earlier objects converged and the later ones untouched. Since every
    step is idempotent, the whole sequence is simply run again later.
    """

    def __init__(
        self,
        store: ObjectStoreBase,
        apimanager: dict,
        cancel_event: Optional[Event] = None,
    ):
        """
        Args:
            store:  ObjectStoreBase
                The store all objects are read from and written to
            apimanager:  dict
                The owning APIManager resource
            cancel_event:  Optional[Event]
                Event that stops the pass before its next store call
        """
        self.store = store
        self.apimanager = apimanager
        self.cancel_event = cancel_event
        self._object_reconciler = ObjectReconciler(store, cancel_event)

    @abc.abstractmethod
    def reconcile(self) -> PassResult:
        """Converge every object of the component"""

    @property
    def annotations(self) -> Optional[dict]:
        """The ownership annotations of the APIManager"""
        return nested_get(self.apimanager, "metadata.annotations")

    def reconcile_resource(
        self, desired: dict, mutator: Union[Mutator, List[Mutator]]
    ) -> ReconcileOutcome:
        """Converge one object, marking it as owned by the APIManager"""
        self._set_owner_reference(desired)
        return self._object_reconciler.reconcile(desired, mutator)

    def run_steps(self, steps: List[Step]) -> PassResult:
        """Run the steps in order, stopping at the first error

        Args:
            steps:  List[Step]
                (label, build_desired, mutator) tuples. The desired object is
                built inside the step so a failed build only affects the
                steps from that one on.

        Returns:
            result:  PassResult
                The outcomes of the completed steps and the first error
        """
        result = PassResult()
        for label, build_desired, mutator in steps:
            log.debug2("Running step [%s]", label)
            try:
                desired = build_desired()
                outcome = self.reconcile_resource(desired, mutator)
            except OperatorError as err:
                log.warning("Step [%s] failed: %s", label, err)
                result.error = err
                result.requeue = True
                return result
            log.debug("Step [%s]: %s", label, outcome.value)
            result.outcomes.append(
                (label, ResourceIdentity.from_definition(desired), outcome)
            )
        return result

    ## Implementation Details ##################################################

    def _set_owner_reference(self, desired: dict):
        """Point the object at the APIManager so it is garbage collected with
        it. Only possible once the APIManager has a uid.
        """
        owner_metadata = self.apimanager.get("metadata") or {}
        uid = owner_metadata.get("uid")
        if not uid:
            return
        desired.setdefault("metadata", {})["ownerReferences"] = [
            {
                "apiVersion": self.apimanager.get("apiVersion"),
                "kind": self.apimanager.get("kind"),
                "name": owner_metadata.get("name"),
                "uid": uid,
                "controller": True,
                "blockOwnerDeletion": True,
            }
        ]
