"""
Cluster store access and the reconcile runtime.

Re-exports so callers can write:
    from overlayip.kube import KubeStore, Controller, ReconcileResult
"""

from overlayip.kube.runtime import (
    Controller,
    Manager,
    ReconcileResult,
    Reconciler,
    WatchSource,
    WorkQueue,
    enqueue_name,
    enqueue_owner,
)
from overlayip.kube.store import KubeStore, ResourceStore, load_kube_config

__all__ = [
    # Store
    "KubeStore",
    "ResourceStore",
    "load_kube_config",
    # Runtime
    "Controller",
    "Manager",
    "ReconcileResult",
    "Reconciler",
    "WatchSource",
    "WorkQueue",
    "enqueue_name",
    "enqueue_owner",
]
