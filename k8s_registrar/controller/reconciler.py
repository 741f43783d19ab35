"""
k8s_registrar.controller.reconciler

Pod Reconciler.

Keeps exactly one SpiffeID object per live pod, correlated through the
``podUid`` label:

- pod present, no SpiffeID            -> create
- pod present, SpiffeID up to date    -> nothing
- pod present, SpiffeID out of date   -> update in place
- pod gone                            -> delete

Invocations for the same pod must be serialized by the caller.
"""

import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..identity.constants import DEFAULT_IDENTITY_TEMPLATE, POD_UID_CORRELATION_LABEL
from ..identity.exceptions import ConfigError, ConflictError
from ..identity.pod import PodView, pod_logger
from ..identity.schema import IdentitySchema, load_schema, resolve_identity
from ..identity.selector import Selector, build_selector, default_selector
from ..identity.spiffeid import descriptor_body, descriptor_spec, make_id, node_parent_id
from ..identity.template import render_template, template_references
from .cancel import CancelToken
from .config import RegistrarConfig
from .store import KubernetesStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileRequest:
    """Pod reference handed over by the event source.

    ``uid`` is the last known UID; set it for delete events so the
    correlated SpiffeIDs can be found after the pod is gone.
    """

    namespace: str
    name: str
    uid: str = ""


class Action(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReconcileResult:
    action: Action
    requeue: bool = False
    spiffe_id: str = ""
    deleted: int = 0


@dataclass(frozen=True)
class DesiredIdentity:
    spiffe_id: str
    parent_id: str
    selector: Selector
    source: str

    def spec(self) -> Dict[str, Any]:
        return descriptor_spec(self.spiffe_id, self.parent_id, self.selector)


def _creation_key(obj: Dict[str, Any]):
    metadata = obj.get("metadata") or {}
    return (metadata.get("creationTimestamp") or "", metadata.get("name") or "")


def _owner_pod_names(obj: Dict[str, Any]) -> List[str]:
    owners = (obj.get("metadata") or {}).get("ownerReferences") or []
    return [o.get("name") for o in owners if o.get("kind") == "Pod"]


def spec_matches(obj: Dict[str, Any], desired: DesiredIdentity) -> bool:
    spec = obj.get("spec") or {}
    return (
        spec.get("spiffeId") == desired.spiffe_id
        and spec.get("parentId") == desired.parent_id
        and Selector.from_dict(spec.get("selector")) == desired.selector
    )


class PodReconciler:
    """Converges SpiffeID objects towards the pods of the cluster."""

    def __init__(
        self,
        config: RegistrarConfig,
        store: KubernetesStore,
        schema: Optional[IdentitySchema] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            config: Registrar configuration
            store: Cluster access
            schema: Identity schema; loaded from ``config.identity_schema_path``
                when not given

        Raises:
            ConfigError: If the configuration is inconsistent or the schema
                file cannot be loaded
        """
        config.validate()
        if schema is None and config.identity_schema_path:
            schema = load_schema(config.identity_schema_path)
        if schema is not None and config.identity_template:
            raise ConfigError(
                "An identity schema and an identity template cannot both be configured"
            )

        self.config = config
        self.store = store
        self.schema = schema
        self.template = config.identity_template or DEFAULT_IDENTITY_TEMPLATE

        if schema is None:
            missing = [
                key
                for key in template_references(self.template)["Context"]
                if key not in config.context
            ]
            if missing:
                logger.warning(
                    "Identity template references context keys that are not "
                    "configured: %s",
                    ", ".join(missing),
                )

    # Identity

    def _override(self, pod: PodView) -> str:
        if self.config.pod_label:
            value = pod.labels.get(self.config.pod_label)
            if value:
                return value
        if self.config.pod_annotation:
            value = pod.annotations.get(self.config.pod_annotation)
            if value:
                return value
        return ""

    def desired_identity(
        self,
        pod: PodView,
        cancel: CancelToken,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Optional[DesiredIdentity]:
        """
        Compute the SPIFFE ID and selector a pod should have.

        Precedence: pod label override, pod annotation override, identity
        schema, identity template.

        Returns:
            DesiredIdentity, or None if the pod should not have a SpiffeID

        Raises:
            TemplateError: If the template cannot be rendered or the identity
                is malformed
            ReconcileCancelledError: If ``cancel`` fires during a lookup
        """
        log = log or pod_logger(logger, pod)
        parent_id = node_parent_id(
            self.config.trust_domain, self.config.cluster, pod.node_name
        )

        override = self._override(pod)
        if override:
            log.debug("Using identity override from pod label/annotation")
            return DesiredIdentity(
                make_id(self.config.trust_domain, override),
                parent_id,
                default_selector(pod),
                "override",
            )

        if self.schema is not None:
            resolution = resolve_identity(
                self.schema,
                pod,
                lambda namespace: self.store.list_config_maps(namespace, cancel),
                log,
            )
            if not resolution.path:
                log.warning("Identity schema produced an empty identity")
                return None
            return DesiredIdentity(
                make_id(self.config.trust_domain, resolution.path),
                parent_id,
                build_selector(self.schema, pod, log),
                "schema",
            )

        label = self.config.identity_template_label
        if label and pod.labels.get(label) != "true":
            log.debug("Pod is not labeled %s=true, no identity", label)
            return None

        path = render_template(self.template, pod, self.config.context)
        return DesiredIdentity(
            make_id(self.config.trust_domain, path),
            parent_id,
            default_selector(pod),
            "template",
        )

    def _eligible(self, pod: PodView, log: logging.LoggerAdapter) -> bool:
        if pod.namespace in self.config.ignore_namespaces:
            log.debug("Namespace %s is ignored", pod.namespace)
            return False
        if not pod.node_name:
            log.debug("Pod is not scheduled yet")
            return False
        return True

    # Reconcile

    def reconcile(
        self, request: ReconcileRequest, cancel: Optional[CancelToken] = None
    ) -> ReconcileResult:
        """
        Converge the SpiffeID objects of one pod.

        Raises:
            TemplateError: On a fatal identity error for this attempt
            StoreError: On a failed cluster API call (retryable)
            ReconcileCancelledError: If ``cancel`` fires
        """
        cancel = cancel or CancelToken()
        pod = self.store.read_pod(request.namespace, request.name, cancel)
        if pod is None:
            return self._reconcile_deleted(request, cancel)

        view = PodView.from_pod(pod)
        log = pod_logger(logger, view)

        desired = None
        if self._eligible(view, log):
            desired = self.desired_identity(view, cancel, log)
        if desired is None:
            deleted = self._delete_all(
                self.store.list_spiffeids(view.namespace, cancel, pod_uid=view.uid),
                cancel,
                log,
            )
            return ReconcileResult(
                Action.DELETED if deleted else Action.SKIPPED, deleted=deleted
            )

        existing = self.store.list_spiffeids(view.namespace, cancel, pod_uid=view.uid)
        if not existing:
            return self._create(view, desired, cancel, log)

        keep, *extras = sorted(existing, key=_creation_key)
        deleted = self._delete_all(extras, cancel, log)

        if spec_matches(keep, desired):
            log.debug("SpiffeID %s is up to date", keep["metadata"]["name"])
            return ReconcileResult(
                Action.UNCHANGED, spiffe_id=desired.spiffe_id, deleted=deleted
            )

        body = copy.deepcopy(keep)
        body["spec"] = {**(body.get("spec") or {}), **desired.spec()}
        try:
            self.store.replace_spiffeid(body, cancel)
        except ConflictError as e:
            log.info("Conflict updating SpiffeID, retrying from a fresh read: %s", e)
            return ReconcileResult(Action.SKIPPED, requeue=True, deleted=deleted)

        log.info(
            "Updated SpiffeID %s: %s", keep["metadata"]["name"], desired.spiffe_id
        )
        return ReconcileResult(
            Action.UPDATED, spiffe_id=desired.spiffe_id, deleted=deleted
        )

    def _create(
        self,
        pod: PodView,
        desired: DesiredIdentity,
        cancel: CancelToken,
        log: logging.LoggerAdapter,
    ) -> ReconcileResult:
        # a previous pod with the same name leaves SpiffeIDs with another UID
        stale = [
            obj
            for obj in self.store.list_spiffeids(pod.namespace, cancel)
            if pod.name in _owner_pod_names(obj)
            and (obj["metadata"].get("labels") or {}).get(POD_UID_CORRELATION_LABEL)
            != pod.uid
        ]
        deleted = self._delete_all(stale, cancel, log)

        try:
            created = self.store.create_spiffeid(
                pod.namespace, descriptor_body(pod, desired.spec()), cancel
            )
        except ConflictError as e:
            log.info("Conflict creating SpiffeID, retrying from a fresh read: %s", e)
            return ReconcileResult(Action.SKIPPED, requeue=True, deleted=deleted)

        log.info(
            "Created SpiffeID %s: %s",
            (created.get("metadata") or {}).get("name", ""),
            desired.spiffe_id,
        )
        return ReconcileResult(
            Action.CREATED, spiffe_id=desired.spiffe_id, deleted=deleted
        )

    def _reconcile_deleted(
        self, request: ReconcileRequest, cancel: CancelToken
    ) -> ReconcileResult:
        if request.uid:
            objs = self.store.list_spiffeids(
                request.namespace, cancel, pod_uid=request.uid
            )
        else:
            objs = [
                obj
                for obj in self.store.list_spiffeids(request.namespace, cancel)
                if request.name in _owner_pod_names(obj)
            ]

        deleted = self._delete_all(objs, cancel, logger)
        if deleted:
            logger.info(
                "Pod %s/%s is gone, deleted %d SpiffeID(s)",
                request.namespace,
                request.name,
                deleted,
            )
        return ReconcileResult(
            Action.DELETED if deleted else Action.SKIPPED, deleted=deleted
        )

    def _delete_all(
        self,
        objs: List[Dict[str, Any]],
        cancel: CancelToken,
        log,
    ) -> int:
        deleted = 0
        for obj in objs:
            metadata = obj["metadata"]
            namespace, name = metadata["namespace"], metadata["name"]
            if self.store.delete_spiffeid(namespace, name, cancel):
                log.info("Deleted SpiffeID %s", metadata["name"])
                deleted += 1
        return deleted
