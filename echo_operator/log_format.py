"""
Process-wide log output setup. When json output is on, every record is stamped
with the resource being reconciled so that the interleaved output of concurrent
reconciles can be told apart.
"""

# Standard
from typing import Callable, Optional
import logging

# First Party
from alog import AlogJsonFormatter
import alog


class EchoJsonFormatter(AlogJsonFormatter):
    """Json formatter that adds the reconciliation id and the identity of the
    resource to each record. A resource attached to the record itself with
    extra={"resource": manifest} takes precedence over the formatter's.
    """

    # Record attribute -> path of the value in the manifest
    RESOURCE_FIELDS = {
        "kind": ("kind",),
        "apiVersion": ("apiVersion",),
        "resourceName": ("metadata", "name"),
        "resourceNamespace": ("metadata", "namespace"),
        "resourceVersion": ("metadata", "resourceVersion"),
    }

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "threadName",
        "reconciliationId",
        *RESOURCE_FIELDS,
    ]

    def __init__(
        self,
        manifest: Optional[dict] = None,
        reconciliation_id: Optional[str] = None,
    ):
        super().__init__()
        self.manifest = manifest
        self.reconciliation_id = reconciliation_id

    def format(self, record):
        if self.reconciliation_id:
            record.reconciliationId = self.reconciliation_id

        resource = getattr(record, "resource", None) or self.manifest
        if resource:
            for attr, path in self.RESOURCE_FIELDS.items():
                value = resource
                for part in path:
                    value = (value or {}).get(part)
                setattr(record, attr, value)

        return super().format(record)


def configure_logging(
    default_level: str,
    filters: str = "",
    log_json: bool = False,
    thread_id: bool = False,
    json_formatter: Optional[EchoJsonFormatter] = None,
    handler_generator: Optional[Callable[[], logging.Handler]] = None,
):
    """Configure alog for the whole process

    Args:
        default_level:  str
            The level for channels without a filter
        filters:  str
            Per-channel levels as CHANNEL:level pairs
        log_json:  bool
            Use json output rather than the pretty printer
        thread_id:  bool
            Include the thread id in each line
        json_formatter:  Optional[EchoJsonFormatter]
            The formatter to use for json output. A formatter without resource
            information is used if not given.
        handler_generator:  Optional[Callable[[], logging.Handler]]
            Factory for the root handler, to keep output going to the same
            destination across reconfiguration
    """
    alog.configure(
        default_level=default_level,
        filters=filters,
        formatter=(json_formatter or EchoJsonFormatter()) if log_json else "pretty",
        thread_id=thread_id,
        handler_generator=handler_generator,
    )
