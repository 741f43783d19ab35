"""
k8s_registrar.identity.spiffeid

SPIFFE ID rendering and SpiffeID descriptor bodies.
"""

from typing import Any, Dict

from .constants import (
    POD_UID_CORRELATION_LABEL,
    SEPARATOR,
    SPIFFE_SCHEME,
    SPIFFEID_GROUP,
    SPIFFEID_KIND,
    SPIFFEID_VERSION,
)
from .exceptions import InvalidIdentityFormatError
from .pod import PodView
from .selector import Selector


def make_id(trust_domain: str, path: str) -> str:
    """
    Render a SPIFFE ID under a trust domain.

    Args:
        trust_domain: Trust domain, e.g. ``example.org``
        path: Identity path, with or without a leading separator

    Returns:
        str: ``spiffe://<trust_domain>/<path>``

    Raises:
        InvalidIdentityFormatError: If the path is empty or ends with the separator
    """
    trust_domain = trust_domain.strip()
    if trust_domain.startswith(SPIFFE_SCHEME):
        trust_domain = trust_domain[len(SPIFFE_SCHEME) :]
    trust_domain = trust_domain.rstrip(SEPARATOR)
    if not trust_domain:
        raise InvalidIdentityFormatError("invalid identity, empty trust domain")

    path = path.lstrip(SEPARATOR)
    if not path:
        raise InvalidIdentityFormatError("invalid identity, empty path")
    if path.endswith(SEPARATOR):
        raise InvalidIdentityFormatError(
            f"invalid identity, ends with separator: {path!r}"
        )
    return f"{SPIFFE_SCHEME}{trust_domain}{SEPARATOR}{path}"


def node_parent_id(trust_domain: str, cluster: str, node_name: str) -> str:
    """SPIFFE ID of the node agent the workload entry is parented to."""
    return make_id(trust_domain, f"k8s-workload-registrar/{cluster}/node/{node_name}")


def descriptor_spec(spiffe_id: str, parent_id: str, selector: Selector) -> Dict[str, Any]:
    return {
        "spiffeId": spiffe_id,
        "parentId": parent_id,
        "selector": selector.to_dict(),
    }


def descriptor_body(pod: PodView, spec: Dict[str, Any]) -> Dict[str, Any]:
    """Build a new SpiffeID object for a pod.

    The name is generated by the API server; the pod is found again through
    the ``podUid`` label, never through the name.
    """
    return {
        "apiVersion": f"{SPIFFEID_GROUP}/{SPIFFEID_VERSION}",
        "kind": SPIFFEID_KIND,
        "metadata": {
            "generateName": f"{pod.name}-",
            "namespace": pod.namespace,
            "labels": {POD_UID_CORRELATION_LABEL: pod.uid},
            "ownerReferences": [
                {
                    "apiVersion": "v1",
                    "kind": "Pod",
                    "name": pod.name,
                    "uid": pod.uid,
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ],
        },
        "spec": spec,
    }
