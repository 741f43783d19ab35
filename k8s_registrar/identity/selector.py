"""
k8s_registrar.identity.selector

Selector Builder.

Selectors bind a SPIFFE ID to a running workload. Only attributes the
workload attestor can re-derive from the pod itself are selector material;
literal values and ConfigMap lookups only shape the identity string.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .constants import SELECTOR_FIELDS, WORKLOAD_ATTESTOR
from .exceptions import FieldResolutionError
from .pod import PodView, pod_logger
from .schema import AttestorSource, IdentitySchema, resolve_workload_attestor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selector:
    node_name: str
    namespace: str = ""
    pod_uid: str = ""
    pod_name: str = ""
    service_account: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Return the ``spec.selector`` body, omitting unset keys."""
        body = {
            "namespace": self.namespace,
            "podUid": self.pod_uid,
            "podName": self.pod_name,
            "serviceAccount": self.service_account,
        }
        result = {k: v for k, v in body.items() if v}
        result["nodeName"] = self.node_name
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Selector":
        data = data or {}
        return cls(
            node_name=data.get("nodeName") or "",
            namespace=data.get("namespace") or "",
            pod_uid=data.get("podUid") or "",
            pod_name=data.get("podName") or "",
            service_account=data.get("serviceAccount") or "",
        )


def default_selector(pod: PodView) -> Selector:
    """Selector used when identities come from a template or pod label."""
    return Selector(node_name=pod.node_name, namespace=pod.namespace, pod_uid=pod.uid)


def build_selector(
    schema: IdentitySchema, pod: PodView, log: Optional[logging.LoggerAdapter] = None
) -> Selector:
    """
    Build the selector for a pod from the workload attestor fields of a schema.

    Args:
        schema: The identity schema
        pod: Pod attribute snapshot
        log: Logger carrying the pod context

    Returns:
        Selector: Always carries ``node_name``; other keys only when a
        workload attestor field maps to them
    """
    log = log or pod_logger(logger, pod)
    selector = Selector(node_name=pod.node_name)

    for f in schema.fields:
        if f.value:
            continue
        source = f.source
        if not isinstance(source, AttestorSource) or source.group != WORKLOAD_ATTESTOR:
            continue

        try:
            label, value = resolve_workload_attestor(source, pod, log)
        except FieldResolutionError as e:
            log.error("Error retrieving selector value for field name=%s: %s", f.name, e)
            continue

        if not label:
            log.debug("Selector name for field name=%s is empty, skipping it", f.name)
            continue

        attribute = SELECTOR_FIELDS.get(label)
        if attribute is None:
            log.error(
                "Unknown selector for field name=%s: selector=%s, value=%s",
                f.name,
                label,
                value,
            )
            continue
        selector = replace(selector, **{attribute: value})

    return selector
