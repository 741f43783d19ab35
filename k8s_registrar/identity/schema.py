"""
k8s_registrar.identity.schema

Identity Schema Resolver.

An identity schema is an ordered list of fields. Each field contributes one
path segment to the SPIFFE ID, taken from a literal value, from the workload
attestor (pod attributes), or from a key in a ConfigMap. Example::

    version: "1"
    fields:
      - name: cluster
        value: minikube
      - name: region
        configMapSource: {name: cluster-info, ns: kube-system, field: cluster-region}
      - name: ns
        attestorSource:
          group: workloadAttestor
          mapping: [{type: k8s, field: ns}]

A field that cannot be resolved falls back to its own name, so a partially
unreachable environment still yields an identity.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from .constants import (
    K8S_MAPPING_FIELDS,
    MAPPING_TYPE_K8S,
    NODE_ATTESTOR,
    NODE_ATTESTOR_PLACEHOLDER,
    SEPARATOR,
    WORKLOAD_ATTESTOR,
)
from .exceptions import (
    ConfigError,
    FieldResolutionError,
    FieldValidationError,
    StoreError,
)
from .pod import PodView, pod_logger

logger = logging.getLogger(__name__)

# namespace -> [(config map name, data), ...]
ConfigMapLister = Callable[[str], Iterable[Tuple[str, Optional[Mapping[str, str]]]]]


@dataclass(frozen=True)
class AttestorMapping:
    """One ``{type, field}`` entry of an attestor source mapping list."""

    type: str
    field: str


@dataclass(frozen=True)
class AttestorSource:
    group: str
    mappings: Tuple[AttestorMapping, ...] = ()


@dataclass(frozen=True)
class ConfigMapSource:
    name: str
    namespace: str
    field: str


FieldSource = Union[AttestorSource, ConfigMapSource, None]


@dataclass(frozen=True)
class Field:
    name: str
    value: str = ""
    source: FieldSource = None


@dataclass(frozen=True)
class IdentitySchema:
    version: str = ""
    fields: Tuple[Field, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IdentitySchema":
        """Build a schema from the parsed YAML document."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("identity schema must be a mapping")

        raw_fields = data.get("fields") or []
        if not isinstance(raw_fields, list):
            raise ConfigError("identity schema 'fields' must be a list")

        return cls(
            version=str(data.get("version", "")),
            fields=tuple(_parse_field(raw, i) for i, raw in enumerate(raw_fields)),
        )


class SourceKind(enum.Enum):
    """Which source actually supplied a field value."""

    LITERAL = "literal"
    ATTESTOR = "attestor"
    CONFIG_MAP = "configMap"
    NONE = "none"


@dataclass(frozen=True)
class FieldResolution:
    name: str
    value: str
    kind: SourceKind
    selector_label: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class IdentityResolution:
    path: str
    trace: Tuple[FieldResolution, ...] = field(default_factory=tuple)


def _parse_field(raw: Any, index: int) -> Field:
    if not isinstance(raw, dict):
        raise ConfigError(f"identity schema field #{index} must be a mapping")

    name = str(raw.get("name") or "")
    value = raw.get("value")
    value = "" if value is None else str(value)

    attestor = raw.get("attestorSource")
    config_map = raw.get("configMapSource")
    if attestor and config_map:
        logger.warning(
            "Identity schema field %r sets both attestorSource and "
            "configMapSource; using attestorSource",
            name,
        )

    source: FieldSource = None
    if attestor:
        mappings = attestor.get("mapping") or []
        source = AttestorSource(
            group=str(attestor.get("group") or ""),
            mappings=tuple(
                AttestorMapping(
                    type=str(m.get("type") or ""), field=str(m.get("field") or "")
                )
                for m in mappings
            ),
        )
    elif config_map:
        source = ConfigMapSource(
            name=str(config_map.get("name") or ""),
            namespace=str(config_map.get("ns") or ""),
            field=str(config_map.get("field") or ""),
        )

    return Field(name=name, value=value, source=source)


def load_schema(path: str) -> IdentitySchema:
    """
    Load an identity schema from a YAML file.

    Args:
        path: Path to the identity schema file

    Returns:
        IdentitySchema: The parsed schema

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Failed to read identity schema file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse identity schema file {path}: {e}") from e

    schema = IdentitySchema.from_dict(data)
    logger.info(
        "Loaded identity schema version=%r with %d field(s) from %s",
        schema.version,
        len(schema.fields),
        path,
    )
    return schema


def resolve_k8s_field(key: str, pod: PodView) -> Tuple[str, str]:
    """Return ``(selector label, value)`` for a k8s mapping field key."""
    entry = K8S_MAPPING_FIELDS.get(key)
    if entry is None:
        raise FieldResolutionError(f"Unknown field for k8s attestor: {key}")
    label, attribute = entry
    return label, getattr(pod, attribute)


def resolve_workload_attestor(
    source: AttestorSource, pod: PodView, log: logging.LoggerAdapter
) -> Tuple[str, str]:
    """
    Scan the mappings in order and consume the first supported one.

    Returns:
        Tuple of (selector label, value)

    Raises:
        FieldResolutionError: If the consumed mapping is invalid or no
            supported mapping exists
    """
    for mapping in source.mappings:
        if mapping.type == MAPPING_TYPE_K8S:
            return resolve_k8s_field(mapping.field, pod)
        log.warning("Skipping unknown attestor mapping type: %s", mapping.type)

    raise FieldResolutionError("Cannot find a supported attestor mapping")


def resolve_attestor(
    source: AttestorSource, pod: PodView, log: logging.LoggerAdapter
) -> Tuple[str, str]:
    if source.group == WORKLOAD_ATTESTOR:
        return resolve_workload_attestor(source, pod, log)
    if source.group == NODE_ATTESTOR:
        raise FieldResolutionError(
            "Attestor group nodeAttestor is not implemented",
            placeholder=NODE_ATTESTOR_PLACEHOLDER,
        )
    raise FieldResolutionError(f"Unknown attestor group: {source.group}")


def resolve_config_map(
    source: ConfigMapSource, lister: ConfigMapLister, log: logging.LoggerAdapter
) -> str:
    """Find ``source.field`` in the ConfigMap named ``source.name``.

    Every ConfigMap in the namespace is listed and scanned; nothing is cached.
    """
    try:
        items = lister(source.namespace)
    except StoreError as e:
        raise FieldResolutionError(
            f"Unable to list ConfigMaps in namespace {source.namespace}: {e}"
        ) from e

    for name, data in items:
        if name != source.name:
            continue
        if not data:
            log.debug("ConfigMap %s has no data", name)
            continue
        value = data.get(source.field)
        if value:
            return value
        log.debug("Data field %s not found in ConfigMap %s", source.field, name)

    raise FieldResolutionError(
        f"No ConfigMap with name={source.name} and field={source.field} "
        f"in namespace {source.namespace} found"
    )


def _resolve_source(
    f: Field, pod: PodView, lister: ConfigMapLister, log: logging.LoggerAdapter
) -> FieldResolution:
    source = f.source
    if isinstance(source, AttestorSource):
        label, value = resolve_attestor(source, pod, log)
        kind = SourceKind.ATTESTOR
    elif isinstance(source, ConfigMapSource):
        label, value = "", resolve_config_map(source, lister, log)
        kind = SourceKind.CONFIG_MAP
    elif source is None:
        raise FieldResolutionError(f"Unknown or missing source for field: {f.name}")
    else:
        raise TypeError(f"unhandled field source {type(source).__name__}")

    if not value:
        raise FieldResolutionError(f"Field {f.name} resolved to an empty value")
    return FieldResolution(f.name, value, kind, selector_label=label)


def resolve_field(
    f: Field, pod: PodView, lister: ConfigMapLister, log: logging.LoggerAdapter
) -> FieldResolution:
    """
    Resolve one field: literal value first, then its configured source.

    Raises:
        FieldValidationError: If the field has no name
    """
    if not f.name:
        raise FieldValidationError(
            "Identity schema field with a missing name; all fields must have names"
        )

    if f.value:
        return FieldResolution(f.name, f.value, SourceKind.LITERAL)

    try:
        return _resolve_source(f, pod, lister, log)
    except FieldResolutionError as e:
        log.error("Error retrieving value for field name=%s: %s", f.name, e)
        log.info("Assigning field name=%s as the value for this field", f.name)
        return FieldResolution(f.name, f.name, SourceKind.NONE, error=str(e))


def resolve_identity(
    schema: IdentitySchema,
    pod: PodView,
    lister: ConfigMapLister,
    log: Optional[logging.LoggerAdapter] = None,
) -> IdentityResolution:
    """
    Build the identity path for a pod from the schema fields, in order.

    Args:
        schema: The identity schema
        pod: Pod attribute snapshot
        lister: Lists ``(name, data)`` for the ConfigMaps of a namespace
        log: Logger carrying the pod context

    Returns:
        IdentityResolution: ``/``-prefixed path and a per-field trace
    """
    log = log or pod_logger(logger, pod)
    trace: List[FieldResolution] = []
    for f in schema.fields:
        try:
            resolution = resolve_field(f, pod, lister, log)
        except FieldValidationError as e:
            log.error("%s. Ignoring this field.", e)
            continue
        trace.append(resolution)

    path = "".join(SEPARATOR + r.value for r in trace)
    log.debug("Resolved identity path %s", path)
    return IdentityResolution(path=path, trace=tuple(trace))
