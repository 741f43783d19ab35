"""
k8s_registrar.controller.store

Access to pods, ConfigMaps and SpiffeID objects through the kubernetes client.

Every call is issued with ``async_req=True`` and awaited in short slices, so a
fired CancelToken abandons the outstanding request. ``ApiException`` is mapped
onto the store error taxonomy: 404 -> NotFoundError, 409 -> ConflictError,
anything else -> StoreError.
"""

import logging
import multiprocessing
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client
from urllib3.exceptions import HTTPError as TransportError

from ..identity.constants import (
    POD_UID_CORRELATION_LABEL,
    SPIFFEID_GROUP,
    SPIFFEID_PLURAL,
    SPIFFEID_VERSION,
)
from ..identity.exceptions import (
    ConflictError,
    NotFoundError,
    ReconcileCancelledError,
    StoreError,
)
from .cancel import CancelToken

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05


def _store_error(operation: str, e: client.exceptions.ApiException) -> StoreError:
    status = e.status or 0
    if status == 404:
        return NotFoundError(f"{operation}: not found", status=status)
    if status == 409:
        return ConflictError(f"{operation}: conflict: {e.reason}", status=status)
    if status == 403:
        return StoreError(f"{operation}: permission denied: {e.reason}", status=status)
    return StoreError(f"{operation} failed: {e}", status=status)


class KubernetesStore:
    """Thin wrapper over ``CoreV1Api`` and ``CustomObjectsApi``."""

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
    ):
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

    def _call(self, operation: str, cancel: CancelToken, fn: Callable, *args, **kwargs):
        cancel.check(operation)
        try:
            pending = fn(
                *args, async_req=True, _request_timeout=cancel.remaining(), **kwargs
            )
            while True:
                try:
                    result = pending.get(timeout=POLL_INTERVAL_SECONDS)
                    break
                except multiprocessing.TimeoutError:
                    # the request keeps running in the client pool; stop waiting
                    cancel.check(operation)
        except client.exceptions.ApiException as e:
            raise _store_error(operation, e) from e
        except TransportError as e:
            if cancel.cancelled:
                raise ReconcileCancelledError(f"{operation} abandoned: {e}") from e
            raise StoreError(f"{operation} failed: {e}") from e
        cancel.check(operation)
        return result

    # Pods

    def read_pod(
        self, namespace: str, name: str, cancel: CancelToken
    ) -> Optional[client.V1Pod]:
        """Return the pod, or None if it no longer exists."""
        try:
            return self._call(
                f"read pod {namespace}/{name}",
                cancel,
                self.core_api.read_namespaced_pod,
                name,
                namespace,
            )
        except NotFoundError:
            return None

    # ConfigMaps

    def list_config_maps(
        self, namespace: str, cancel: CancelToken
    ) -> List[Tuple[str, Optional[Dict[str, str]]]]:
        """Return ``(name, data)`` for every ConfigMap in the namespace."""
        try:
            cm_list = self._call(
                f"list ConfigMaps in {namespace}",
                cancel,
                self.core_api.list_namespaced_config_map,
                namespace,
            )
        except NotFoundError:
            logger.debug("No ConfigMaps found in namespace %s", namespace)
            return []
        return [(item.metadata.name, item.data) for item in cm_list.items or []]

    # SpiffeIDs

    def list_spiffeids(
        self, namespace: str, cancel: CancelToken, pod_uid: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        List SpiffeID objects in a namespace.

        Args:
            namespace: Namespace to list
            cancel: Cancellation token
            pod_uid: When set, only objects whose correlation label matches;
                otherwise every object carrying the correlation label

        Returns:
            List of SpiffeID objects as dictionaries
        """
        if pod_uid:
            label_selector = f"{POD_UID_CORRELATION_LABEL}={pod_uid}"
        else:
            label_selector = POD_UID_CORRELATION_LABEL

        response = self._call(
            f"list SpiffeIDs in {namespace} ({label_selector})",
            cancel,
            self.custom_api.list_namespaced_custom_object,
            SPIFFEID_GROUP,
            SPIFFEID_VERSION,
            namespace,
            SPIFFEID_PLURAL,
            label_selector=label_selector,
        )
        return list(response.get("items") or [])

    def create_spiffeid(
        self, namespace: str, body: Dict[str, Any], cancel: CancelToken
    ) -> Dict[str, Any]:
        return self._call(
            f"create SpiffeID in {namespace}",
            cancel,
            self.custom_api.create_namespaced_custom_object,
            SPIFFEID_GROUP,
            SPIFFEID_VERSION,
            namespace,
            SPIFFEID_PLURAL,
            body,
        )

    def replace_spiffeid(
        self, obj: Dict[str, Any], cancel: CancelToken
    ) -> Dict[str, Any]:
        """Replace an object in place; the body carries ``resourceVersion``."""
        metadata = obj["metadata"]
        return self._call(
            f"update SpiffeID {metadata['namespace']}/{metadata['name']}",
            cancel,
            self.custom_api.replace_namespaced_custom_object,
            SPIFFEID_GROUP,
            SPIFFEID_VERSION,
            metadata["namespace"],
            SPIFFEID_PLURAL,
            metadata["name"],
            obj,
        )

    def delete_spiffeid(self, namespace: str, name: str, cancel: CancelToken) -> bool:
        """Delete an object; returns False if it was already gone."""
        try:
            self._call(
                f"delete SpiffeID {namespace}/{name}",
                cancel,
                self.custom_api.delete_namespaced_custom_object,
                SPIFFEID_GROUP,
                SPIFFEID_VERSION,
                namespace,
                SPIFFEID_PLURAL,
                name,
            )
        except NotFoundError:
            return False
        return True
