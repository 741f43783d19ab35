"""
k8s_registrar.controller.config

Registrar configuration, read from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from ..identity.constants import DEFAULT_IGNORE_NAMESPACES
from ..identity.exceptions import ConfigError

ENV_PREFIX = "REGISTRAR_"


def get_required_env(key: str, environ: Mapping[str, str] = os.environ) -> str:
    """Get a required environment variable or raise ConfigError."""
    value = environ.get(key)
    if value is None or value == "":
        raise ConfigError(f'Required environment variable: "{key}" is not set')
    return value


def get_optional_env(
    key: str, default: Optional[str] = None, environ: Mapping[str, str] = os.environ
) -> Optional[str]:
    """Get an optional environment variable with optional default."""
    return environ.get(key, default)


def parse_context(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``Key=Value,Key2=Value2`` into a context map."""
    context: Dict[str, str] = {}
    if not raw:
        return context
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Invalid identity context entry: {item!r}")
        context[key.strip()] = value.strip()
    return context


def parse_list(raw: Optional[str]) -> Tuple[str, ...]:
    if raw is None:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class RegistrarConfig:
    """
    Knobs consumed by the pod reconciler.

    Attributes:
        trust_domain: Trust domain for rendered SPIFFE IDs
        cluster: Cluster name used in the node parent ID
        pod_label: Pod label whose value, when present, is the identity
        pod_annotation: Pod annotation whose value, when present, is the identity
        identity_template: Identity template string
        identity_template_label: Opt-in label for template mode; pods need it set to "true"
        context: Values for ``{{.Context.<Key>}}`` placeholders
        identity_schema_path: Identity schema YAML file
        ignore_namespaces: Namespaces whose pods never get a SpiffeID
    """

    trust_domain: str
    cluster: str = "cluster"
    pod_label: str = ""
    pod_annotation: str = ""
    identity_template: str = ""
    identity_template_label: str = ""
    context: Mapping[str, str] = field(default_factory=dict)
    identity_schema_path: str = ""
    ignore_namespaces: Tuple[str, ...] = DEFAULT_IGNORE_NAMESPACES
    reconcile_timeout: float = 30.0
    resync_seconds: int = 300

    def validate(self) -> None:
        """Raise ConfigError on inconsistent settings."""
        if not self.trust_domain:
            raise ConfigError("trust_domain must be set")
        if self.identity_template and self.identity_schema_path:
            raise ConfigError(
                "identity_template and identity_schema_path are mutually exclusive"
            )
        if self.identity_template_label and not self.identity_template:
            raise ConfigError("identity_template_label requires identity_template")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "RegistrarConfig":
        """Load configuration from ``REGISTRAR_*`` environment variables."""

        def env(name: str, default: Optional[str] = None) -> Optional[str]:
            return get_optional_env(ENV_PREFIX + name, default, environ)

        ignore = env("IGNORE_NAMESPACES")
        try:
            reconcile_timeout = float(env("RECONCILE_TIMEOUT", "30"))
            resync_seconds = int(env("RESYNC_SECONDS", "300"))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        config = cls(
            trust_domain=get_required_env(ENV_PREFIX + "TRUST_DOMAIN", environ),
            cluster=env("CLUSTER", "cluster"),
            pod_label=env("POD_LABEL", ""),
            pod_annotation=env("POD_ANNOTATION", ""),
            identity_template=env("IDENTITY_TEMPLATE", ""),
            identity_template_label=env("IDENTITY_TEMPLATE_LABEL", ""),
            context=parse_context(env("CONTEXT")),
            identity_schema_path=env("IDENTITY_SCHEMA_PATH", ""),
            ignore_namespaces=(
                DEFAULT_IGNORE_NAMESPACES if ignore is None else parse_list(ignore)
            ),
            reconcile_timeout=reconcile_timeout,
            resync_seconds=resync_seconds,
        )
        config.validate()
        return config
