"""
Custom logging formats that carry the reconciliation context
"""

# First Party
from alog import AlogJsonFormatter


class ApiManagerJsonFormatter(AlogJsonFormatter):
    """Json formatter that adds the identity of the APIManager being reconciled
    and the id of the pass to every record. A record may carry its own
    `resource` (via `extra`) to report the object being reconciled instead.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "namespace",
        "resourceName",
        "reconciliationId",
    ]

    def __init__(self, manifest=None, reconciliation_id=None):
        super().__init__()
        self.manifest = manifest
        self.reconciliation_id = reconciliation_id

    def format(self, record):
        if self.reconciliation_id:
            record.reconciliationId = self.reconciliation_id

        if resource := getattr(record, "resource", self.manifest):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")
            metadata = resource.get("metadata") or {}
            record.namespace = metadata.get("namespace")
            record.resourceName = metadata.get("name")

        return super().format(record)
