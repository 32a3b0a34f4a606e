"""
This module holds all of the command classes for the main entrypoint
"""

# Local
from .base import CmdBase
from .reconcile_cmd import ReconcileCmd
