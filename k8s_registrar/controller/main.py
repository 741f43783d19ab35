"""Kubernetes workload registrar.

Watches pods and keeps one SpiffeID object per pod, so the SPIRE server can
issue SVIDs for them.

Configuration comes from environment variables:
- REGISTRAR_TRUST_DOMAIN (required)
- REGISTRAR_CLUSTER
- REGISTRAR_POD_LABEL / REGISTRAR_POD_ANNOTATION
- REGISTRAR_IDENTITY_TEMPLATE / REGISTRAR_IDENTITY_TEMPLATE_LABEL
- REGISTRAR_CONTEXT (Key=Value,Key2=Value2)
- REGISTRAR_IDENTITY_SCHEMA_PATH
- REGISTRAR_IGNORE_NAMESPACES
- REGISTRAR_RECONCILE_TIMEOUT / REGISTRAR_RESYNC_SECONDS
- REGISTRAR_LOG_LEVEL
"""

import logging
import os
import sys
import threading
import time
from typing import Optional

from kubernetes import client, config, watch
from urllib3.exceptions import HTTPError as TransportError

from ..identity.exceptions import (
    ConfigError,
    ReconcileCancelledError,
    StoreError,
    TemplateError,
)
from .cancel import CancelToken
from .config import RegistrarConfig, get_optional_env
from .reconciler import PodReconciler, ReconcileRequest, ReconcileResult
from .store import KubernetesStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
BASE_BACKOFF_SECONDS = 0.5


def is_running_in_cluster() -> bool:
    """Check if running inside a Kubernetes cluster."""
    return bool(os.getenv("KUBERNETES_SERVICE_HOST"))


def load_kubernetes_config() -> None:
    if is_running_in_cluster():
        config.load_incluster_config()
    else:
        config.load_kube_config()


def reconcile_with_retry(
    reconciler: PodReconciler,
    request: ReconcileRequest,
    timeout: float,
    sleep=time.sleep,
) -> Optional[ReconcileResult]:
    """
    Reconcile one pod, retrying conflicts and store errors with backoff.

    Template errors are not retried here; the next event for the pod
    triggers a new attempt.

    Returns:
        The final ReconcileResult, or None if every attempt failed
    """
    key = f"{request.namespace}/{request.name}"
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            result = reconciler.reconcile(request, CancelToken(timeout))
        except TemplateError as e:
            logger.error("Cannot build identity for pod %s: %s", key, e)
            return None
        except ReconcileCancelledError as e:
            logger.warning("Reconcile of pod %s cancelled: %s", key, e)
        except StoreError as e:
            logger.warning(
                "Reconcile of pod %s failed (attempt %d/%d): %s",
                key,
                attempt,
                MAX_ATTEMPTS,
                e,
            )
        else:
            if not result.requeue:
                logger.debug("Reconciled pod %s: %s", key, result.action.value)
                return result
            # conflicts retry immediately from a fresh read
            continue

        sleep(BASE_BACKOFF_SECONDS * 2 ** (attempt - 1))

    logger.error("Giving up on pod %s after %d attempts", key, MAX_ATTEMPTS)
    return None


def resync(
    reconciler: PodReconciler, core_api: client.CoreV1Api, timeout: float
) -> str:
    """Reconcile every pod and return the list resourceVersion."""
    pods = core_api.list_pod_for_all_namespaces()
    logger.info("Resync: reconciling %d pod(s)", len(pods.items))
    for pod in pods.items:
        request = ReconcileRequest(
            pod.metadata.namespace, pod.metadata.name, pod.metadata.uid or ""
        )
        reconcile_with_retry(reconciler, request, timeout)
    return pods.metadata.resource_version


def run(
    reconciler: PodReconciler,
    core_api: client.CoreV1Api,
    registrar_config: RegistrarConfig,
    stop: threading.Event,
) -> None:
    """Watch pods and reconcile each event; resync whenever the watch ends.

    Events are processed one at a time, so a pod is never reconciled twice
    concurrently.
    """
    while not stop.is_set():
        try:
            resource_version = resync(
                reconciler, core_api, registrar_config.reconcile_timeout
            )
            stream = watch.Watch().stream(
                core_api.list_pod_for_all_namespaces,
                resource_version=resource_version,
                timeout_seconds=registrar_config.resync_seconds,
            )
            for event in stream:
                if stop.is_set():
                    break
                pod = event.get("object")
                if event.get("type") == "ERROR" or not isinstance(pod, client.V1Pod):
                    logger.warning(
                        "Skipping pod watch event %s: %s", event.get("type"), pod
                    )
                    continue
                request = ReconcileRequest(
                    pod.metadata.namespace, pod.metadata.name, pod.metadata.uid or ""
                )
                logger.debug(
                    "Pod event %s for %s/%s", event["type"], request.namespace, request.name
                )
                reconcile_with_retry(
                    reconciler, request, registrar_config.reconcile_timeout
                )
        except client.exceptions.ApiException as e:
            # 410 Gone: resourceVersion too old, start over with a resync
            logger.warning("Pod watch ended: %s", e)
            stop.wait(BASE_BACKOFF_SECONDS)
        except TransportError as e:
            logger.warning("Pod watch connection failed: %s", e)
            stop.wait(BASE_BACKOFF_SECONDS)


def main() -> None:
    """Main execution function."""
    logging.basicConfig(
        level=get_optional_env("REGISTRAR_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        registrar_config = RegistrarConfig.from_env()
        load_kubernetes_config()
        reconciler = PodReconciler(registrar_config, KubernetesStore())
    except (ConfigError, config.ConfigException) as e:
        logger.error("Error: %s", e)
        sys.exit(1)

    logger.info(
        "Starting workload registrar for trust domain %s",
        registrar_config.trust_domain,
    )
    try:
        run(reconciler, client.CoreV1Api(), registrar_config, threading.Event())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
