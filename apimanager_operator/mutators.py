"""
The catalog of field-level merge policies used to converge an existing object
toward its desired state. Each Mutator owns a group of fields, copies values
from desired into existing in place, and reports whether anything changed.
Mutators never modify the desired object and never share values with it.
"""

# Standard
from typing import Any, Iterable, List, Optional, Tuple
import abc
import copy

# Third Party
from kubernetes.utils.quantity import parse_quantity

# First Party
import alog

# Local
from . import constants
from .utils import MISSING, is_zero_value, nested_get, nested_pop, nested_set

log = alog.use_channel("MUTAT")

# Location of the container list in a pod-templated workload
CONTAINERS_PATH = "spec.template.spec.containers"
TRIGGERS_PATH = "spec.triggers"
IMAGE_CHANGE_FROM_NAME_PATH = "imageChangeParams.from.name"

## Base ########################################################################


class Mutator(abc.ABC):
    """A stateless, idempotent merge policy for one group of fields"""

    @abc.abstractmethod
    def apply(self, desired: dict, existing: dict) -> bool:
        """Copy the owned fields from desired into existing where the policy
        allows it

        Args:
            desired:  dict
                The freshly built desired object. Only read.
            existing:  dict
                The live object. Mutated in place.

        Returns:
            changed:  bool
                True if existing was modified
        """

    def __call__(self, desired: dict, existing: dict) -> bool:
        return self.apply(desired, existing)

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self):
        return hash((type(self), repr(self)))

    def __repr__(self):
        params = ", ".join(f"{key}={val!r}" for key, val in vars(self).items())
        return f"{type(self).__name__}({params})"


class MutatorPipeline(Mutator):
    """Ordered composition of mutators. Every member runs on every apply and
    the results are OR-ed together. When two members own overlapping fields,
    the later one wins.
    """

    def __init__(self, *mutators: Mutator):
        self.mutators = list(mutators)

    def apply(self, desired: dict, existing: dict) -> bool:
        changed = False
        for mutator in self.mutators:
            # No short circuit: every mutator evaluates its own fields
            mutator_changed = mutator.apply(desired, existing)
            log.debug4("%s -> %s", mutator, mutator_changed)
            changed = mutator_changed or changed
        return changed

    def __iter__(self):
        return iter(self.mutators)

    def __len__(self):
        return len(self.mutators)


## Catalog #####################################################################


class CreateOnlyMutator(Mutator):
    """Never touch an object once it exists"""

    def apply(self, desired: dict, existing: dict) -> bool:
        return False


class DefaultsOnlyMutator(Mutator):
    """Fill the given fields only where the existing value is missing or at its
    zero value. Values a user has already set are left alone.
    """

    def __init__(self, *paths: str):
        self.paths = list(paths)

    def apply(self, desired: dict, existing: dict) -> bool:
        changed = False
        for path in self.paths:
            desired_val = nested_get(desired, path, MISSING)
            if is_zero_value(desired_val):
                continue
            if is_zero_value(nested_get(existing, path, MISSING)):
                log.debug3("Defaulting [%s]", path)
                nested_set(existing, path, copy.deepcopy(desired_val))
                changed = True
        return changed


class DefaultsOnlyMapMutator(Mutator):
    """Per-key defaulting for the map at the given path (e.g. secret data).
    Keys that are missing or empty in existing are filled. Keys the user set
    and keys desired does not know about are never touched.
    """

    def __init__(self, path: str):
        self.path = path

    def apply(self, desired: dict, existing: dict) -> bool:
        desired_map = nested_get(desired, self.path, MISSING)
        if not isinstance(desired_map, dict):
            return False

        existing_map = nested_get(existing, self.path, MISSING)
        if not isinstance(existing_map, dict):
            existing_map = {}
        changed = False
        for key, val in desired_map.items():
            if is_zero_value(val) or not is_zero_value(existing_map.get(key, MISSING)):
                continue
            log.debug3("Defaulting [%s.%s]", self.path, key)
            existing_map[key] = copy.deepcopy(val)
            changed = True
        if changed:
            nested_set(existing, self.path, existing_map)
        return changed


class GenericFieldsMutator(Mutator):
    """Keep each of the given fields equal to desired. A field desired does not
    set is removed from existing.

    A path segment ending in "[]" names a list whose items are paired by their
    "name" key, so "spec.template.spec.containers[].resources" syncs the
    resources of each named container independently. Items that exist only on
    one side are not added or removed.
    """

    def __init__(self, *paths: str):
        self.paths = list(paths)

    def apply(self, desired: dict, existing: dict) -> bool:
        changed = False
        for path in self.paths:
            changed = _sync_path(desired, existing, path) or changed
        return changed


class MapEntriesMutator(Mutator):
    """Keep the keys that desired sets in the map at the given path equal to
    desired. Keys only existing has (e.g. added by other controllers) are left
    in place.
    """

    def __init__(self, path: str):
        self.path = path

    def apply(self, desired: dict, existing: dict) -> bool:
        desired_map = nested_get(desired, self.path, MISSING)
        if not isinstance(desired_map, dict) or not desired_map:
            return False

        existing_map = nested_get(existing, self.path, MISSING)
        if not isinstance(existing_map, dict):
            existing_map = {}
        changed = False
        for key, val in desired_map.items():
            if existing_map.get(key, MISSING) != val:
                log.debug3("Updating [%s.%s]", self.path, key)
                existing_map[key] = copy.deepcopy(val)
                changed = True
        if changed:
            nested_set(existing, self.path, existing_map)
        return changed


class ReplicasMutator(GenericFieldsMutator):
    """Keep spec.replicas equal to desired"""

    def __init__(self):
        super().__init__("spec.replicas")


class _ContainerMutator(Mutator):
    """Shared base for mutators that work on the containers of a pod template.
    Containers are paired by name. If a container name is given, only that
    container is considered.
    """

    def __init__(self, container: Optional[str] = None):
        self.container = container

    def _container_pairs(
        self, desired: dict, existing: dict
    ) -> List[Tuple[dict, dict]]:
        existing_containers = {
            entry.get("name"): entry
            for entry in nested_get(existing, CONTAINERS_PATH) or []
        }
        pairs = []
        for desired_container in nested_get(desired, CONTAINERS_PATH) or []:
            name = desired_container.get("name")
            if self.container is not None and name != self.container:
                continue
            existing_container = existing_containers.get(name)
            if existing_container is None:
                log.debug2("Container [%s] not found on existing object", name)
                continue
            pairs.append((desired_container, existing_container))
        return pairs


class EnvVarMutator(_ContainerMutator):
    """Keep the named environment variables equal to desired. A variable is
    updated when its definition differs, appended when missing, and removed
    when desired no longer sets it. All other variables are left untouched.
    """

    def __init__(self, *env_names: str, container: Optional[str] = None):
        super().__init__(container)
        self.env_names = list(env_names)

    def apply(self, desired: dict, existing: dict) -> bool:
        changed = False
        for desired_container, existing_container in self._container_pairs(
            desired, existing
        ):
            for env_name in self.env_names:
                changed = (
                    self._sync_env_var(desired_container, existing_container, env_name)
                    or changed
                )
        return changed

    @staticmethod
    def _sync_env_var(
        desired_container: dict, existing_container: dict, env_name: str
    ) -> bool:
        desired_var = _find_named(desired_container.get("env") or [], env_name)
        existing_env = existing_container.get("env") or []
        existing_var = _find_named(existing_env, env_name)

        if desired_var is MISSING:
            if existing_var is MISSING:
                return False
            log.debug3("Removing env var [%s]", env_name)
            existing_container["env"] = [
                entry for entry in existing_env if entry.get("name") != env_name
            ]
            return True

        if existing_var is MISSING:
            log.debug3("Adding env var [%s]", env_name)
            existing_container["env"] = existing_env + [copy.deepcopy(desired_var)]
            return True

        if existing_var != desired_var:
            log.debug3("Updating env var [%s]", env_name)
            existing_container["env"] = [
                copy.deepcopy(desired_var) if entry.get("name") == env_name else entry
                for entry in existing_env
            ]
            return True
        return False


class ArgsMutator(_ContainerMutator):
    """Keep the container args equal to desired"""

    def apply(self, desired: dict, existing: dict) -> bool:
        changed = False
        for desired_container, existing_container in self._container_pairs(
            desired, existing
        ):
            changed = (
                _sync_path(desired_container, existing_container, "args") or changed
            )
        return changed


class ImageChangeTriggerMutator(Mutator):
    """Keep the image the ImageChange trigger follows equal to desired. Only
    imageChangeParams.from.name is owned. Fields written by the trigger
    controller (e.g. lastTriggeredImage) and all other triggers are left
    alone. A live object without an ImageChange trigger gets desired's.
    """

    def apply(self, desired: dict, existing: dict) -> bool:
        desired_trigger = _find_image_change_trigger(desired)
        if desired_trigger is MISSING:
            return False

        existing_trigger = _find_image_change_trigger(existing)
        if existing_trigger is MISSING:
            log.debug3("Adding ImageChange trigger")
            triggers = nested_get(existing, TRIGGERS_PATH) or []
            nested_set(
                existing, TRIGGERS_PATH, triggers + [copy.deepcopy(desired_trigger)]
            )
            return True

        desired_name = nested_get(desired_trigger, IMAGE_CHANGE_FROM_NAME_PATH)
        if nested_get(existing_trigger, IMAGE_CHANGE_FROM_NAME_PATH) != desired_name:
            log.debug3("Updating ImageChange trigger source to [%s]", desired_name)
            nested_set(existing_trigger, IMAGE_CHANGE_FROM_NAME_PATH, desired_name)
            return True
        return False


class ContainerResourcesMutator(_ContainerMutator):
    """Keep the resource requirements of each container equal to desired.
    Quantities are compared by value, so "1000m" and "1" are the same cpu
    request and the API server's canonical form never causes an update.
    """

    def apply(self, desired: dict, existing: dict) -> bool:
        changed = False
        for desired_container, existing_container in self._container_pairs(
            desired, existing
        ):
            desired_resources = desired_container.get("resources", MISSING)
            existing_resources = existing_container.get("resources", MISSING)
            if desired_resources is MISSING:
                if existing_resources is MISSING:
                    continue
                log.debug3("Removing resources of [%s]", existing_container.get("name"))
                del existing_container["resources"]
                changed = True
            elif existing_resources is MISSING or _normalize_resources(
                desired_resources
            ) != _normalize_resources(existing_resources):
                log.debug3("Updating resources of [%s]", existing_container.get("name"))
                existing_container["resources"] = copy.deepcopy(desired_resources)
                changed = True
        return changed


## Presets #####################################################################


def generic_backend_mutators() -> List[Mutator]:
    """Mutators every backend DeploymentConfig is reconciled with"""
    return [
        ImageChangeTriggerMutator(),
        ContainerResourcesMutator(),
        GenericFieldsMutator("spec.template.spec.affinity"),
        GenericFieldsMutator("spec.template.spec.tolerations"),
        MapEntriesMutator("spec.template.metadata.labels"),
        GenericFieldsMutator("spec.template.spec.priorityClassName"),
        GenericFieldsMutator("spec.template.spec.topologySpreadConstraints"),
        MapEntriesMutator("spec.template.metadata.annotations"),
    ]


def generic_pdb_mutator() -> Mutator:
    return GenericFieldsMutator(
        "spec.maxUnavailable", "spec.minAvailable", "spec.selector"
    )


def generic_grafana_dashboard_mutator() -> Mutator:
    return GenericFieldsMutator("metadata.labels", "spec")


def defaults_only_secret_mutator() -> Mutator:
    return DefaultsOnlyMapMutator("data")


## Implementation Details ######################################################


def _find_named(entries: Iterable[dict], name: str) -> Any:
    for entry in entries:
        if entry.get("name") == name:
            return entry
    return MISSING


def _sync_path(desired: dict, existing: dict, path: str) -> bool:
    """Make the value at path in existing match desired, descending through
    name-paired list segments
    """
    list_path, sep, rest = path.partition(constants.LIST_BY_NAME_SUFFIX)
    if sep:
        rest = rest.lstrip(constants.NESTED_DICT_DELIM)
        existing_items = nested_get(existing, list_path) or []
        changed = False
        for desired_item in nested_get(desired, list_path) or []:
            existing_item = _find_named(existing_items, desired_item.get("name"))
            if existing_item is not MISSING:
                changed = _sync_path(desired_item, existing_item, rest) or changed
        return changed

    desired_val = nested_get(desired, path, MISSING)
    existing_val = nested_get(existing, path, MISSING)
    if desired_val is MISSING:
        if existing_val is MISSING:
            return False
        log.debug3("Removing [%s]", path)
        nested_pop(existing, path)
        return True
    if desired_val != existing_val:
        log.debug3("Updating [%s]", path)
        nested_set(existing, path, copy.deepcopy(desired_val))
        return True
    return False


def _find_image_change_trigger(obj: dict) -> Any:
    for trigger in nested_get(obj, TRIGGERS_PATH) or []:
        if trigger.get("type") == "ImageChange":
            return trigger
    return MISSING


def _normalize_resources(resources: Any) -> Any:
    """Replace every quantity in a resources block with its numeric value.
    Values that are not valid quantities are compared as given.
    """
    if not isinstance(resources, dict):
        return resources
    normalized = {}
    for group, quantities in resources.items():
        if isinstance(quantities, dict):
            normalized[group] = {
                key: _parse_quantity_or_raw(val) for key, val in quantities.items()
            }
        else:
            normalized[group] = quantities
    return normalized


def _parse_quantity_or_raw(val: Any) -> Any:
    try:
        return parse_quantity(val)
    except (ValueError, TypeError):
        return val
