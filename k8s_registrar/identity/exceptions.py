"""
k8s_registrar.identity.exceptions

Custom exceptions for the identity resolution engine and the pod reconciler.
"""


class RegistrarError(Exception):
    """Base exception for registrar errors."""

    pass


class ConfigError(RegistrarError):
    """Raised when the registrar configuration or identity schema is unusable."""

    pass


class TemplateError(RegistrarError):
    """Raised when an identity template cannot be rendered."""

    pass


class ContextValueMissingError(TemplateError):
    """Raised when a template references a key absent from the context map."""

    def __init__(self, key: str):
        super().__init__(
            f"template references a value not included in context map: {key}"
        )
        self.key = key


class InvalidReferenceError(TemplateError):
    """Raised when a template placeholder references an unknown attribute."""

    def __init__(self, reference: str, reason: str = "unknown reference"):
        super().__init__(f"template has an invalid reference {reference!r}: {reason}")
        self.reference = reference


class InvalidIdentityFormatError(TemplateError):
    """Raised when a rendered identity is malformed."""

    pass


class FieldResolutionError(RegistrarError):
    """Raised when a single identity schema field cannot be resolved.

    Carries the placeholder value that stands in for the field.
    """

    def __init__(self, message: str, placeholder: str = ""):
        super().__init__(message)
        self.placeholder = placeholder


class FieldValidationError(RegistrarError):
    """Raised when an identity schema field is invalid (e.g. missing name)."""

    pass


class StoreError(RegistrarError):
    """Raised when a call against the cluster API fails."""

    retryable = True

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    pass


class ConflictError(StoreError):
    """Raised when a write loses an optimistic-concurrency race."""

    pass


class ReconcileCancelledError(RegistrarError):
    """Raised when the caller cancels a reconcile attempt or its deadline passes."""

    pass
