"""
The get -> create | mutate -> update cycle for a single object
"""

# Standard
from enum import Enum
from threading import Event
from typing import List, Optional, Union
import copy

# First Party
import alog

# Local
from .exceptions import NotFoundError, ReconcileCancelledError
from .managed_object import ResourceIdentity
from .mutators import Mutator, MutatorPipeline
from .store import ObjectStoreBase

log = alog.use_channel("RCOBJ")


class ReconcileOutcome(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class ObjectReconciler:
    """Converge one object at a time toward its desired state.

    Errors are never retried here. Anything other than a missing object on
    lookup is raised to the caller unmodified so the scheduling loop can try
    the whole pass again later.
    """

    def __init__(self, store: ObjectStoreBase, cancel_event: Optional[Event] = None):
        """
        Args:
            store:  ObjectStoreBase
                The store to read and write objects through
            cancel_event:  Optional[Event]
                When set, the next store call is not made and the reconcile
                raises ReconcileCancelledError instead
        """
        self.store = store
        self.cancel_event = cancel_event

    def reconcile(
        self, desired: dict, mutator: Union[Mutator, List[Mutator]]
    ) -> ReconcileOutcome:
        """Create the object if absent, otherwise apply the mutator and write
        the result back only if something changed

        Args:
            desired:  dict
                The desired object. Never modified.
            mutator:  Union[Mutator, List[Mutator]]
                The policy deciding which fields are synced. A list is run as
                a MutatorPipeline.

        Returns:
            outcome:  ReconcileOutcome
                CREATED, UPDATED, or UNCHANGED
        """
        if isinstance(mutator, list):
            mutator = MutatorPipeline(*mutator)
        identity = ResourceIdentity.from_definition(desired)

        self._check_cancelled(identity)
        try:
            existing = self.store.get(identity)
        except NotFoundError:
            log.debug("[%s] not found. Creating.", identity)
            self._check_cancelled(identity)
            self.store.create(copy.deepcopy(desired))
            log.info("Created [%s]", identity)
            return ReconcileOutcome.CREATED

        if not mutator.apply(desired, existing):
            log.debug2("[%s] unchanged", identity)
            return ReconcileOutcome.UNCHANGED

        # The mutated copy is dropped on cancellation, never partially written
        self._check_cancelled(identity)
        self.store.update(existing)
        log.info("Updated [%s]", identity)
        return ReconcileOutcome.UPDATED

    def _check_cancelled(self, identity: ResourceIdentity):
        if self.cancel_event is not None and self.cancel_event.is_set():
            log.debug("Cancelled before store call for [%s]", identity)
            raise ReconcileCancelledError(f"Reconcile of {identity} cancelled")
