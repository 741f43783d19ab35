"""
k8s_registrar.identity

Identity resolution engine for the Kubernetes workload registrar.

This package derives a SPIFFE ID and a selector set from pod attributes,
either through an identity template or through a declarative identity schema.
"""

from .pod import PodView
from .template import render_template
from .schema import (
    AttestorMapping,
    AttestorSource,
    ConfigMapSource,
    Field,
    FieldResolution,
    IdentityResolution,
    IdentitySchema,
    SourceKind,
    load_schema,
    resolve_identity,
)
from .selector import Selector, build_selector, default_selector
from .spiffeid import make_id
from .exceptions import (
    RegistrarError,
    ConfigError,
    TemplateError,
    ContextValueMissingError,
    InvalidReferenceError,
    InvalidIdentityFormatError,
    FieldResolutionError,
    FieldValidationError,
    StoreError,
    NotFoundError,
    ConflictError,
    ReconcileCancelledError,
)

__all__ = [
    "PodView",
    # Template engine
    "render_template",
    # Identity schema
    "AttestorMapping",
    "AttestorSource",
    "ConfigMapSource",
    "Field",
    "FieldResolution",
    "IdentityResolution",
    "IdentitySchema",
    "SourceKind",
    "load_schema",
    "resolve_identity",
    # Selectors
    "Selector",
    "build_selector",
    "default_selector",
    "make_id",
    # Exceptions
    "RegistrarError",
    "ConfigError",
    "TemplateError",
    "ContextValueMissingError",
    "InvalidReferenceError",
    "InvalidIdentityFormatError",
    "FieldResolutionError",
    "FieldValidationError",
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "ReconcileCancelledError",
]

__version__ = "0.1.0"
