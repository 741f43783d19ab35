"""
Shared fixtures for the registrar unit tests.

The fakes below stand in for ``CoreV1Api`` and ``CustomObjectsApi``. They keep
objects in memory, accept ``async_req=True`` like the generated client, and
raise real ``ApiException`` errors, so the store layer is exercised exactly as
against a cluster.
"""

import copy
import functools
import multiprocessing
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from k8s_registrar.controller.config import RegistrarConfig
from k8s_registrar.controller.store import KubernetesStore
from k8s_registrar.identity.schema import IdentitySchema

TRUST_DOMAIN = "example.org"
POD_NAME = "test-pod"
POD_NAMESPACE = "default"
POD_SERVICE_ACCOUNT = "serviceAccount"
NODE_NAME = "test-node"


# ============================================================================
# Fakes
# ============================================================================


class FakeAsyncResult:
    """Stands in for the ``ApplyResult`` the client returns with ``async_req=True``.

    The call runs on its own thread, and ``get`` raises
    ``multiprocessing.TimeoutError`` while it is still running.
    """

    def __init__(self, fn: Callable, *args, **kwargs):
        self._value = None
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run, args=(fn, args, kwargs), daemon=True
        )
        self._thread.start()

    def _run(self, fn, args, kwargs):
        try:
            self._value = fn(*args, **kwargs)
        except Exception as e:
            self._error = e

    def get(self, timeout=None):
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise multiprocessing.TimeoutError()
        if self._error is not None:
            raise self._error
        return self._value


def async_capable(method: Callable) -> Callable:
    """Give a fake API method the client's ``async_req`` keyword."""

    @functools.wraps(method)
    def wrapper(self, *args, async_req=False, **kwargs):
        if async_req:
            return FakeAsyncResult(method, self, *args, **kwargs)
        return method(self, *args, **kwargs)

    return wrapper


class FakeCoreV1Api:
    """In-memory pods and ConfigMaps."""

    def __init__(self):
        self.pods: Dict[tuple, client.V1Pod] = {}
        self.config_maps: List[client.V1ConfigMap] = []
        self.config_map_list_status: Optional[int] = None
        self.config_map_list_calls = 0
        # when set, pod reads block until the event fires
        self.read_gate: Optional[threading.Event] = None

    def add_pod(self, pod: client.V1Pod) -> client.V1Pod:
        self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod
        return pod

    def remove_pod(self, namespace: str, name: str) -> None:
        del self.pods[(namespace, name)]

    def add_config_map(self, name: str, namespace: str, data: Dict[str, str]) -> None:
        self.config_maps.append(
            client.V1ConfigMap(
                metadata=client.V1ObjectMeta(name=name, namespace=namespace),
                data=data,
            )
        )

    @async_capable
    def read_namespaced_pod(self, name, namespace, _request_timeout=None):
        if self.read_gate is not None:
            self.read_gate.wait(10)
        pod = self.pods.get((namespace, name))
        if pod is None:
            raise ApiException(status=404, reason="Not Found")
        return pod

    @async_capable
    def list_namespaced_config_map(self, namespace, _request_timeout=None):
        self.config_map_list_calls += 1
        if self.config_map_list_status is not None:
            raise ApiException(status=self.config_map_list_status, reason="Injected")
        return client.V1ConfigMapList(
            items=[cm for cm in self.config_maps if cm.metadata.namespace == namespace]
        )


class FakeCustomObjectsApi:
    """In-memory SpiffeID objects with resourceVersion checks."""

    def __init__(self):
        self.objects: Dict[tuple, Dict[str, Any]] = {}
        self.counter = 0
        self.creates = 0
        self.replaces = 0
        self.deletes = 0
        self.conflict_on_replace = False
        self.fail_status: Optional[int] = None
        self.fail_error: Optional[Exception] = None
        self.request_timeouts: List[Optional[float]] = []

    def _maybe_fail(self):
        if self.fail_error is not None:
            raise self.fail_error
        if self.fail_status is not None:
            raise ApiException(status=self.fail_status, reason="Injected")

    @staticmethod
    def _matches(obj: Dict[str, Any], label_selector: Optional[str]) -> bool:
        if not label_selector:
            return True
        labels = obj["metadata"].get("labels") or {}
        key, sep, value = label_selector.partition("=")
        if not sep:
            return key in labels
        return labels.get(key) == value

    def seed(
        self,
        namespace: str,
        name: str,
        uid: str,
        spec: Dict[str, Any],
        owner: str = "",
    ):
        """Store an object directly, as if created earlier."""
        self.counter += 1
        metadata = {
            "name": name,
            "namespace": namespace,
            "labels": {"podUid": uid},
            "resourceVersion": "1",
            "creationTimestamp": f"2026-01-01T00:00:{self.counter:02d}Z",
        }
        if owner:
            metadata["ownerReferences"] = [{"kind": "Pod", "name": owner, "uid": uid}]
        self.objects[(namespace, name)] = {"metadata": metadata, "spec": spec}

    def items(self, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        return [o for o in self.objects.values() if self._matches(o, label_selector)]

    @async_capable
    def list_namespaced_custom_object(
        self,
        group,
        version,
        namespace,
        plural,
        label_selector=None,
        _request_timeout=None,
    ):
        self.request_timeouts.append(_request_timeout)
        self._maybe_fail()
        items = [
            copy.deepcopy(o)
            for (ns, _), o in sorted(self.objects.items())
            if ns == namespace and self._matches(o, label_selector)
        ]
        return {"items": items}

    @async_capable
    def create_namespaced_custom_object(
        self, group, version, namespace, plural, body, _request_timeout=None
    ):
        self._maybe_fail()
        self.counter += 1
        self.creates += 1
        obj = copy.deepcopy(body)
        metadata = obj["metadata"]
        prefix = metadata.pop("generateName", "spiffeid-")
        metadata["name"] = f"{prefix}{self.counter:05d}"
        metadata["namespace"] = namespace
        metadata["resourceVersion"] = "1"
        metadata["creationTimestamp"] = f"2026-01-01T00:00:{self.counter:02d}Z"
        self.objects[(namespace, metadata["name"])] = obj
        return copy.deepcopy(obj)

    @async_capable
    def replace_namespaced_custom_object(
        self, group, version, namespace, plural, name, body, _request_timeout=None
    ):
        self._maybe_fail()
        stored = self.objects.get((namespace, name))
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        if self.conflict_on_replace or (
            body["metadata"].get("resourceVersion")
            != stored["metadata"]["resourceVersion"]
        ):
            raise ApiException(status=409, reason="Conflict")
        self.replaces += 1
        obj = copy.deepcopy(body)
        obj["metadata"]["resourceVersion"] = str(
            int(stored["metadata"]["resourceVersion"]) + 1
        )
        self.objects[(namespace, name)] = obj
        return copy.deepcopy(obj)

    @async_capable
    def delete_namespaced_custom_object(
        self, group, version, namespace, plural, name, _request_timeout=None
    ):
        self._maybe_fail()
        if (namespace, name) not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        self.deletes += 1
        del self.objects[(namespace, name)]
        return {"status": "Success"}


# ============================================================================
# Fixtures
# ============================================================================


def make_pod(
    name: str = POD_NAME,
    namespace: str = POD_NAMESPACE,
    uid: str = "123",
    service_account: str = POD_SERVICE_ACCOUNT,
    node_name: Optional[str] = NODE_NAME,
    hostname: Optional[str] = "hostname",
    labels: Optional[Dict[str, str]] = None,
    annotations: Optional[Dict[str, str]] = None,
) -> client.V1Pod:
    """Build a pod the way the API server would return it."""
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            uid=uid,
            labels=labels,
            annotations=annotations,
        ),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name="test-pod", image="test-pod")],
            node_name=node_name,
            hostname=hostname,
            service_account_name=service_account,
        ),
    )


@pytest.fixture
def pod_factory():
    return make_pod


@pytest.fixture
def core_api():
    return FakeCoreV1Api()


@pytest.fixture
def custom_api():
    return FakeCustomObjectsApi()


@pytest.fixture
def store(core_api, custom_api):
    return KubernetesStore(core_api=core_api, custom_api=custom_api)


@pytest.fixture
def registrar_config():
    return RegistrarConfig(trust_domain=TRUST_DOMAIN, cluster="test-cluster")


@pytest.fixture
def cluster_info_schema():
    """Identity schema mixing literal, ConfigMap and attestor sources."""
    return IdentitySchema.from_dict(
        {
            "version": "1",
            "fields": [
                {"name": "cluster", "value": "minikube"},
                {
                    "name": "region",
                    "configMapSource": {
                        "name": "cluster-info",
                        "ns": "kube-system",
                        "field": "cluster-region",
                    },
                },
                {
                    "name": "ns",
                    "attestorSource": {
                        "group": "workloadAttestor",
                        "mapping": [{"type": "k8s", "field": "ns"}],
                    },
                },
                {
                    "name": "sa",
                    "attestorSource": {
                        "group": "workloadAttestor",
                        "mapping": [{"type": "k8s", "field": "sa"}],
                    },
                },
                {
                    "name": "pod",
                    "attestorSource": {
                        "group": "workloadAttestor",
                        "mapping": [{"type": "k8s", "field": "pod-name"}],
                    },
                },
            ],
        }
    )
