"""
k8s_registrar.identity.constants

Names shared by the resolvers, the selector builder and the reconciler.
"""

SEPARATOR = "/"
SPIFFE_SCHEME = "spiffe://"

DEFAULT_IDENTITY_SCHEMA_PATH = "/run/identity-schema/config/identity-schema.yaml"
DEFAULT_IDENTITY_TEMPLATE = "ns/{{.Pod.Namespace}}/sa/{{.Pod.ServiceAccount}}"

# Attestor groups
WORKLOAD_ATTESTOR = "workloadAttestor"
NODE_ATTESTOR = "nodeAttestor"
NODE_ATTESTOR_PLACEHOLDER = "value-from-node-attestor"

# Mapping types
MAPPING_TYPE_K8S = "k8s"

# Selector labels
NAMESPACE_LABEL = "Namespace"
POD_UID_LABEL = "PodUID"
POD_NAME_LABEL = "PodName"
SERVICE_ACCOUNT_LABEL = "ServiceAccount"

# k8s mapping field -> (selector label, PodView attribute)
K8S_MAPPING_FIELDS = {
    "sa": (SERVICE_ACCOUNT_LABEL, "service_account"),
    "ns": (NAMESPACE_LABEL, "namespace"),
    "pod-name": (POD_NAME_LABEL, "name"),
    "pod-uid": (POD_UID_LABEL, "uid"),
}

# Selector label -> Selector attribute
SELECTOR_FIELDS = {
    NAMESPACE_LABEL: "namespace",
    POD_UID_LABEL: "pod_uid",
    POD_NAME_LABEL: "pod_name",
    SERVICE_ACCOUNT_LABEL: "service_account",
}

# Template pod attribute -> PodView attribute
TEMPLATE_POD_ATTRIBUTES = {
    "Name": "name",
    "Namespace": "namespace",
    "ServiceAccount": "service_account",
    "UID": "uid",
    "Hostname": "hostname",
    "NodeName": "node_name",
}

# Descriptor correlation
POD_UID_CORRELATION_LABEL = "podUid"

# SpiffeID custom resource
SPIFFEID_GROUP = "spiffeid.spiffe.io"
SPIFFEID_VERSION = "v1beta1"
SPIFFEID_PLURAL = "spiffeids"
SPIFFEID_KIND = "SpiffeID"

DEFAULT_IGNORE_NAMESPACES = ("kube-system", "kube-public")
