"""
Reconcilers for the logical components of an APIManager
"""

# Local
from .backend import Backend, BackendReconciler
from .backend_options import BackendOptions, BackendOptionsProvider
from .base import BaseComponentReconciler, PassResult, RequeueParams
