#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the APIManager operator
"""

# Standard
from typing import Dict, List, Optional
import argparse
import sys

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import ReconcileCmd
from .config import library_config
from .log_format import ApiManagerJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

DEFAULT_COMMAND = ReconcileCmd.name

## Helpers #####################################################################


def add_library_config_args(
    parser, config_obj=None, path: Optional[List[str]] = None
) -> Dict[str, List[str]]:
    """Add an --<key> override arg for every element of the library config.
    Nested keys use dotted names (e.g. --backend.image).

    Returns:
        setters:  Dict[str, List[str]]
            Mapping from argparse dest to the config key path it sets
    """
    path = path or []
    setters = {}
    config_obj = library_config if config_obj is None else config_obj
    for key, val in config_obj.items():
        sub_path = path + [key]

        # If this is a nested arg, recurse
        if isinstance(val, aconfig.AttributeAccessDict):
            setters.update(add_library_config_args(parser, val, sub_path))
            continue

        arg_name = ".".join(sub_path)
        dest_name = "_".join(sub_path)
        kwargs = {
            "default": val,
            "dest": dest_name,
            "help": f"Library config override for {arg_name}",
        }
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif val is not None:
            kwargs["type"] = type(val)
        parser.add_argument(f"--{arg_name}", **kwargs)
        setters[dest_name] = sub_path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, List[str]]):
    """Write the parsed override values back into the library config"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        for part in config_path[:-1]:
            config_obj = config_obj[part]
        config_obj[config_path[-1]] = getattr(args, dest_name)


## Main ########################################################################


def main(argv: Optional[List[str]] = None) -> int:
    """The main module provides the executable entrypoint for the operator"""
    argv = sys.argv[1:] if argv is None else argv
    parser = argparse.ArgumentParser(description=__doc__)

    # Add the subcommands
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    reconcile_parser = ReconcileCmd().register(subparsers)
    library_args = reconcile_parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)

    # Fall back to the default command when none is given
    if not argv or argv[0] not in subparsers.choices:
        argv = [DEFAULT_COMMAND] + list(argv)
    args = parser.parse_args(argv)

    # Provide overrides to the library configs
    update_library_config(args, library_config_setters)

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=ApiManagerJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    # Run the command's function
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
