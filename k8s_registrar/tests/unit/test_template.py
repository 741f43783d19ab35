"""
Identity template engine tests.

Usage:
    pytest k8s_registrar/tests/unit/test_template.py -v
"""

import pytest

from k8s_registrar.identity import PodView, render_template
from k8s_registrar.identity.exceptions import (
    ContextValueMissingError,
    InvalidIdentityFormatError,
    InvalidReferenceError,
    TemplateError,
)
from k8s_registrar.identity.template import template_references


@pytest.fixture
def pod(pod_factory):
    return PodView.from_pod(pod_factory())


CONTEXT = {"Region": "EU-DE", "ClusterName": "MYCLUSTER"}


class TestRenderTemplate:
    def test_namespace_and_service_account(self, pod):
        template = "ns/{{.Pod.Namespace}}/sa/{{.Pod.ServiceAccount}}"
        assert render_template(template, pod) == "ns/default/sa/serviceAccount"

    def test_pod_name_appended(self, pod):
        template = "ns/{{.Pod.Namespace}}/sa/{{.Pod.ServiceAccount}}/podName/{{.Pod.Name}}"
        assert (
            render_template(template, pod)
            == "ns/default/sa/serviceAccount/podName/test-pod"
        )

    def test_all_pod_attributes(self, pod):
        template = (
            "{{.Pod.Name}}/{{.Pod.Namespace}}/{{.Pod.ServiceAccount}}"
            "/{{.Pod.Hostname}}/{{.Pod.NodeName}}/{{.Pod.UID}}"
        )
        assert (
            render_template(template, pod)
            == "test-pod/default/serviceAccount/hostname/test-node/123"
        )

    def test_context_values(self, pod):
        template = "region/{{.Context.Region}}/cluster/{{.Context.ClusterName}}/podName/{{.Pod.Name}}"
        assert (
            render_template(template, pod, CONTEXT)
            == "region/EU-DE/cluster/MYCLUSTER/podName/test-pod"
        )

    def test_whitespace_inside_braces(self, pod):
        assert render_template("ns/{{ .Pod.Namespace }}", pod) == "ns/default"

    def test_template_without_placeholders(self, pod):
        assert render_template("TEMPLATE", pod) == "TEMPLATE"

    def test_rendering_is_deterministic(self, pod):
        template = "region/{{.Context.Region}}/{{.Pod.Name}}"
        first = render_template(template, pod, CONTEXT)
        assert render_template(template, pod, CONTEXT) == first


class TestTemplateErrors:
    def test_trailing_separator(self, pod):
        with pytest.raises(InvalidIdentityFormatError, match="ends with separator"):
            render_template("invalid/", pod)

    def test_trailing_separator_after_rendering(self, pod):
        with pytest.raises(InvalidIdentityFormatError):
            render_template("ns/{{.Pod.Namespace}}/", pod)

    def test_missing_context_map(self, pod):
        with pytest.raises(ContextValueMissingError) as exc_info:
            render_template("region/{{.Context.Region}}", pod)
        assert exc_info.value.key == "Region"
        assert "not included in context map" in str(exc_info.value)

    def test_unknown_context_key(self, pod):
        with pytest.raises(ContextValueMissingError, match="XXXX"):
            render_template("error/{{.Context.XXXX}}", pod, CONTEXT)

    def test_unknown_pod_attribute(self, pod):
        with pytest.raises(InvalidReferenceError, match="XXXX"):
            render_template("region/{{.Pod.XXXX}}", pod)

    @pytest.mark.parametrize(
        "template",
        [
            "{{.Node.Name}}",
            "{{Pod.Name}}",
            "ns/{{.Pod.Namespace",
            "ns/.Pod.Namespace}}",
            "{{ {{.Pod.Name}}",
        ],
    )
    def test_malformed_placeholders(self, pod, template):
        with pytest.raises(TemplateError):
            render_template(template, pod)

    def test_first_error_wins_left_to_right(self, pod):
        with pytest.raises(ContextValueMissingError) as exc_info:
            render_template("{{.Context.First}}/{{.Context.Second}}", pod)
        assert exc_info.value.key == "First"


class TestTemplateReferences:
    def test_references_in_order(self):
        refs = template_references("{{.Context.B}}/{{.Pod.Name}}/{{.Context.A}}")
        assert refs == {"Pod": ["Name"], "Context": ["B", "A"]}
