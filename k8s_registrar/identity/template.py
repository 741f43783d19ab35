"""
k8s_registrar.identity.template

Identity Template Engine.

Renders identity templates such as ``ns/{{.Pod.Namespace}}/sa/{{.Pod.ServiceAccount}}``
against a pod snapshot and an externally supplied context map. Only two
placeholder namespaces exist: ``.Pod.<Attr>`` and ``.Context.<Key>``.
"""

import re
from typing import Dict, Mapping, Optional

from .constants import SEPARATOR, TEMPLATE_POD_ATTRIBUTES
from .exceptions import (
    ContextValueMissingError,
    InvalidIdentityFormatError,
    InvalidReferenceError,
)
from .pod import PodView

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")
_REFERENCE = re.compile(r"^\.(Pod|Context)\.([A-Za-z_][A-Za-z0-9_]*)$")


def _lookup(reference: str, pod: PodView, context: Mapping[str, str]) -> str:
    match = _REFERENCE.match(reference)
    if not match:
        raise InvalidReferenceError(
            reference, "expected {{.Pod.<Attr>}} or {{.Context.<Key>}}"
        )

    scope, key = match.groups()
    if scope == "Pod":
        attribute = TEMPLATE_POD_ATTRIBUTES.get(key)
        if attribute is None:
            raise InvalidReferenceError(
                reference, f"can't evaluate field {key} of the pod"
            )
        return getattr(pod, attribute)

    if key not in context:
        raise ContextValueMissingError(key)
    return context[key]


def render_template(
    template: str, pod: PodView, context: Optional[Mapping[str, str]] = None
) -> str:
    """
    Render an identity template for a pod.

    Args:
        template: Template string with ``{{.Pod.X}}``/``{{.Context.X}}`` placeholders
        pod: Pod attribute snapshot
        context: Context map supplied by configuration

    Returns:
        str: The rendered identity path (without trust domain)

    Raises:
        ContextValueMissingError: If a context key is not in ``context``
        InvalidReferenceError: If a placeholder is malformed or unknown
        InvalidIdentityFormatError: If the result ends with the separator
    """
    context = context or {}
    parts = []
    position = 0
    for match in _PLACEHOLDER.finditer(template):
        literal = template[position : match.start()]
        if "{{" in literal or "}}" in literal:
            raise InvalidReferenceError(literal, "unbalanced braces")
        parts.append(literal)
        parts.append(_lookup(match.group(1).strip(), pod, context))
        position = match.end()

    tail = template[position:]
    if "{{" in tail or "}}" in tail:
        raise InvalidReferenceError(tail, "unterminated placeholder")
    parts.append(tail)

    rendered = "".join(parts)
    if rendered.endswith(SEPARATOR):
        raise InvalidIdentityFormatError(
            f"invalid identity, ends with separator: {rendered!r}"
        )
    return rendered


def template_references(template: str) -> Dict[str, list]:
    """Return the pod attributes and context keys a template uses, in order."""
    references: Dict[str, list] = {"Pod": [], "Context": []}
    for match in _PLACEHOLDER.finditer(template):
        found = _REFERENCE.match(match.group(1).strip())
        if found:
            references[found.group(1)].append(found.group(2))
    return references
