"""
k8s_registrar.controller

Pod-to-SpiffeID reconciliation on top of the kubernetes client.
"""

from .cancel import CancelToken
from .config import RegistrarConfig
from .reconciler import (
    Action,
    DesiredIdentity,
    PodReconciler,
    ReconcileRequest,
    ReconcileResult,
)
from .store import KubernetesStore

__all__ = [
    "Action",
    "CancelToken",
    "DesiredIdentity",
    "KubernetesStore",
    "PodReconciler",
    "RegistrarConfig",
    "ReconcileRequest",
    "ReconcileResult",
]
