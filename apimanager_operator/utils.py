"""
Common utilities shared across the library
"""

# Standard
from typing import Any

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
MISSING = object()

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and the type of the key for both
    is a dict, recursively merge, otherwise set the base value to the override
    value.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to look in
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            Value returned when the key (or any intermediate dict) is missing

    Returns:
        val:  Any
            Whatever is found at the given key or dflt
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, MISSING)
        if dct is MISSING or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation, creating
    intermediate dicts as needed
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        if dct.get(part) is None:
            dct[part] = {}
        dct = dct[part]
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    dct[parts[-1]] = val


def nested_pop(dct: dict, key: str) -> Any:
    """Helper to remove a value using 'foo.bar' key notation. Missing keys are
    ignored and MISSING is returned.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.get(part)
        if not isinstance(dct, dict):
            return MISSING
    return dct.pop(parts[-1], MISSING)


def is_zero_value(val: Any) -> bool:
    """A value counts as zero when it is absent, None, or an empty/zero
    scalar or collection
    """
    if val is MISSING or val is None:
        return True
    if isinstance(val, bool):
        return not val
    if isinstance(val, (str, bytes, int, float, dict, list, tuple)):
        return not val
    return False
