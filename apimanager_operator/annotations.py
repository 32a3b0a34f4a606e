"""
Selection of mutator pipelines based on ownership annotations on the owning
APIManager
"""

# Standard
from typing import List, Mapping, Optional

# First Party
import alog

# Local
from .mutators import Mutator, ReplicasMutator, generic_backend_mutators

log = alog.use_channel("ANNOT")


def has_override(annotations: Optional[Mapping[str, str]], key: str) -> bool:
    """Check whether an external actor has claimed the field group bound to
    key. Only the presence of the key matters. Its value is never read.

    Args:
        annotations:  Optional[Mapping[str, str]]
            The annotations of the owning resource. None means no overrides.
        key:  str
            The ownership annotation key

    Returns:
        overridden:  bool
            True if the key is present
    """
    return annotations is not None and key in annotations


def select_mutators(
    annotations: Optional[Mapping[str, str]],
    annotation_key: str,
    owned_mutator: Optional[Mutator] = None,
    base: Optional[List[Mutator]] = None,
) -> List[Mutator]:
    """Build the pipeline for one resource. The base mutators are always
    included and the owned mutator is appended unless annotation_key is
    present.

    Args:
        annotations:  Optional[Mapping[str, str]]
            The annotations of the owning resource
        annotation_key:  str
            The ownership annotation bound to owned_mutator
        owned_mutator:  Optional[Mutator]
            The mutator for the claimable field group. Defaults to replica
            count sync.
        base:  Optional[List[Mutator]]
            The mutators that are always included. Defaults to the generic
            backend set.

    Returns:
        mutators:  List[Mutator]
            A new list holding the selected mutators
    """
    if owned_mutator is None:
        owned_mutator = ReplicasMutator()
    mutators = list(generic_backend_mutators() if base is None else base)
    if has_override(annotations, annotation_key):
        log.debug("Field group owned externally via [%s]", annotation_key)
    else:
        mutators.append(owned_mutator)
    return mutators
