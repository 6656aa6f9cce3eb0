"""Log explorer module."""

from .explorer import RPC_BACKEND_ID, ILogExplorer, LogExplorer, aggregate
from .export import export_csv, export_json, load_csv, load_json
from .plan import SearchPlan, fingerprint

__all__ = [
    "ILogExplorer",
    "LogExplorer",
    "RPC_BACKEND_ID",
    "SearchPlan",
    "aggregate",
    "fingerprint",
    "export_json",
    "export_csv",
    "load_json",
    "load_csv",
]
