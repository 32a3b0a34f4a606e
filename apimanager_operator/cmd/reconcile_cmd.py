"""
Run reconciliation passes for a single APIManager manifest
"""
# Standard
from typing import List, Optional
import argparse
import os

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..reconcile import ReconcileManager
from ..store import DryRunObjectStore
from .base import CmdBase

log = alog.use_channel("MAIN")


class ReconcileCmd(CmdBase):
    __doc__ = __doc__

    name = "reconcile"

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(self.name, help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--cr",
            "-c",
            required=True,
            help="The APIManager manifest yaml to reconcile",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        runtime_args.add_argument(
            "--passes",
            "-n",
            type=int,
            default=1,
            help="Number of passes to run back to back",
        )
        return parser

    def cmd(self, args: argparse.Namespace) -> int:
        # Validate args
        assert os.path.isfile(args.cr), "--cr must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"
        assert args.passes >= 1, "--passes must be at least 1"

        with open(args.cr, encoding="utf-8") as handle:
            cr_manifest = yaml.safe_load(handle)

        store = None
        if config.dry_run:
            log.info("Running DRY RUN")
            store = DryRunObjectStore(self._parse_resource_dir(args.resource_dir))
        manager = ReconcileManager(store=store)

        result = None
        for pass_num in range(args.passes):
            result = manager.safe_reconcile(cr_manifest)
            for label, identity, outcome in result.outcomes:
                log.info(
                    "[pass %d] %s %s: %s", pass_num + 1, label, identity, outcome.value
                )
            if not result.succeeded:
                log.error("[pass %d] failed: %s", pass_num + 1, result.error)

        return 0 if result.succeeded else 1

    ## Implementation ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource
                            for resource in yaml.safe_load_all(handle)
                            if resource
                        )
        return all_resources
