"""
k8s_registrar.identity.pod

Read-only view of the pod attributes the resolvers may reference.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from kubernetes import client


def _frozen(data) -> Mapping[str, str]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class PodView:
    """Snapshot of a pod, captured once per reconcile.

    Every field resolution in one pass reads from the same snapshot, so a pod
    update racing with the reconcile cannot produce a mixed identity.
    """

    name: str
    namespace: str
    uid: str = ""
    service_account: str = ""
    node_name: str = ""
    hostname: str = ""
    labels: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    annotations: Mapping[str, str] = field(default_factory=lambda: _frozen({}))

    @classmethod
    def from_pod(cls, pod: client.V1Pod) -> "PodView":
        """Build a view from a kubernetes client ``V1Pod``."""
        metadata = pod.metadata or client.V1ObjectMeta()
        spec = pod.spec
        return cls(
            name=metadata.name or "",
            namespace=metadata.namespace or "",
            uid=metadata.uid or "",
            service_account=(spec.service_account_name or "") if spec else "",
            node_name=(spec.node_name or "") if spec else "",
            hostname=(spec.hostname or "") if spec else "",
            labels=_frozen(metadata.labels),
            annotations=_frozen(metadata.annotations),
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class PodLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the pod it concerns."""

    def process(self, msg, kwargs):
        return f"[{self.extra['pod']}] {msg}", kwargs


def pod_logger(base: logging.Logger, pod: PodView) -> PodLoggerAdapter:
    return PodLoggerAdapter(base, {"pod": pod.key})
