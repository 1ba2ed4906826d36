"""Tests for declaration compilation and loading.

Tests cover:
- @ctx.* resolution and @ref.* parsing
- Document validation
- Directory loading order
- The bundled fibonacci stack
"""

import json
from datetime import date

import pytest
import yaml

from infraplan import graph, planner
from infraplan.compiler import compile_documents, compile_value
from infraplan.declarations import DeclarationLoader, list_stacks, stack_dir
from infraplan.errors import DeclarationError, DuplicateIdError
from infraplan.schemas import Reference


# =============================================================================
# COMPILER
# =============================================================================


class TestCompileValue:
    """Reference handling inside property values."""

    def test_ctx_resolved(self):
        ctx = {"domain_names": "example.com", "tls": {"arn": "arn:cert"}}
        value = {"names": "@ctx.domain_names", "cert": "@ctx.tls.arn"}

        assert compile_value(value, ctx) == {"names": "example.com", "cert": "arn:cert"}

    def test_ctx_can_resolve_structured_values(self):
        ctx = {"tags": {"team": "web"}}
        assert compile_value("@ctx.tags", ctx) == {"team": "web"}

    def test_missing_ctx_path(self):
        with pytest.raises(DeclarationError, match="missing 'certificate_arn'"):
            compile_value("@ctx.certificate_arn", {})

    def test_ref_becomes_reference(self):
        value = compile_value({"origins": ["@ref.bucket.domain_name"]}, {})
        assert value == {"origins": [Reference("bucket", "domain_name")]}

    def test_malformed_ref(self):
        with pytest.raises(DeclarationError, match="expected @ref"):
            compile_value("@ref.bucket", {})

    def test_embedded_reference_is_literal(self):
        assert compile_value("prefix-@ctx.name", {"name": "x"}) == "prefix-@ctx.name"

    def test_other_at_strings_are_literals(self):
        assert compile_value("@channel", {}) == "@channel"

    def test_ctx_dates_become_iso_strings(self):
        assert compile_value("@ctx.rotation", {"rotation": [date(2025, 1, 1)]}) == ["2025-01-01"]

    def test_binary_values_rejected(self):
        with pytest.raises(DeclarationError, match="Unsupported property value of type bytes"):
            compile_value({"blob": b"\x00\x01"}, {})


class TestCompileDocuments:
    """Document structure validation."""

    def test_resources_and_outputs(self):
        document = {
            "resources": [
                {"id": "bucket", "kind": "storage.bucket", "properties": {"versioned": False}},
                {
                    "id": "cdn",
                    "kind": "cdn.distribution",
                    "depends_on": "bucket",
                    "properties": {"origin": "@ref.bucket.domain_name"},
                },
            ],
            "outputs": {"cdnDomain": "@ref.cdn.domain_name"},
        }

        resources = compile_documents([("site.yaml", document)])

        assert resources.ids() == ["bucket", "cdn"]
        assert resources.get("cdn").depends_on == ("bucket",)
        assert resources.outputs == {"cdnDomain": Reference("cdn", "domain_name")}

    @pytest.mark.parametrize("document, message", [
        ([], "mapping at top level"),
        ({"resource": []}, "unknown top-level keys"),
        ({"resources": {}}, "'resources' must be a list"),
        ({"resources": [{"kind": "test.a"}]}, "'id' is required"),
        ({"resources": [{"id": "a"}]}, "'kind' is required"),
        ({"resources": [{"id": "a", "kind": "t", "props": {}}]}, "unknown keys"),
        ({"resources": [{"id": "a", "kind": "t", "properties": []}]}, "'properties' must be a mapping"),
        ({"resources": [{"id": "a", "kind": "t", "depends_on": [1]}]}, "'depends_on'"),
        ({"resources": ""}, "'resources' must be a list"),
        ({"resources": [{"id": "a", "kind": "t", "properties": ""}]}, "'properties' must be a mapping"),
        ({"outputs": []}, "'outputs' must be a mapping"),
        ({"outputs": {"x": "literal"}}, "must be an @ref"),
    ])
    def test_invalid(self, document, message):
        with pytest.raises(DeclarationError, match=message):
            compile_documents([("bad.yaml", document)])

    def test_duplicate_id_across_documents(self):
        doc = {"resources": [{"id": "a", "kind": "test.a"}]}

        with pytest.raises(DuplicateIdError):
            compile_documents([("one.yaml", doc), ("two.yaml", doc)])

    def test_duplicate_output_across_documents(self):
        one = {"resources": [{"id": "a", "kind": "test.a"}], "outputs": {"x": "@ref.a.id"}}
        two = {"outputs": {"x": "@ref.a.arn"}}

        with pytest.raises(DeclarationError, match="already defined in one.yaml"):
            compile_documents([("one.yaml", one), ("two.yaml", two)])


# =============================================================================
# LOADER
# =============================================================================


class TestDeclarationLoader:
    """Loading declaration directories."""

    def test_loads_files_in_sorted_order(self, tmp_path):
        (tmp_path / "b.yaml").write_text(yaml.dump({"resources": [{"id": "second", "kind": "t.b"}]}))
        (tmp_path / "a.json").write_text(json.dumps({"resources": [{"id": "first", "kind": "t.a"}]}))
        (tmp_path / "notes.txt").write_text("ignored")

        resources = DeclarationLoader(tmp_path).load()

        assert resources.ids() == ["first", "second"]

    def test_underscore_paths_skipped(self, tmp_path):
        (tmp_path / "main.yaml").write_text(yaml.dump({"resources": [{"id": "a", "kind": "t"}]}))
        drafts = tmp_path / "_drafts"
        drafts.mkdir()
        (drafts / "wip.yaml").write_text(yaml.dump({"resources": [{"id": "a", "kind": "t"}]}))

        loader = DeclarationLoader(tmp_path)

        assert [p.name for p in loader.list_files()] == ["main.yaml"]
        assert loader.load().ids() == ["a"]

    def test_single_file(self, tmp_path):
        path = tmp_path / "stack.yml"
        path.write_text(yaml.dump({"resources": [{"id": "a", "kind": "t"}]}))

        assert DeclarationLoader(path).load().ids() == ["a"]

    def test_ctx_passed_to_compiler(self, tmp_path):
        (tmp_path / "main.yaml").write_text(yaml.dump({
            "resources": [{"id": "a", "kind": "t", "properties": {"name": "@ctx.name"}}],
        }))

        resources = DeclarationLoader(tmp_path).load({"name": "prod-site"})

        assert resources.get("a").properties == {"name": "prod-site"}

    def test_missing_directory(self, tmp_path):
        with pytest.raises(DeclarationError, match="not found"):
            DeclarationLoader(tmp_path / "nope").load()

    def test_empty_directory(self, tmp_path):
        with pytest.raises(DeclarationError, match="No declaration files"):
            DeclarationLoader(tmp_path).load()

    def test_unparseable_yaml(self, tmp_path):
        (tmp_path / "bad.yaml").write_text("resources: [unclosed")

        with pytest.raises(DeclarationError, match="Failed to parse"):
            DeclarationLoader(tmp_path).load()

    def test_yaml_dates_become_iso_strings(self, tmp_path):
        (tmp_path / "main.yaml").write_text(
            "resources:\n"
            "  - id: cert\n"
            "    kind: tls.certificate\n"
            "    properties:\n"
            "      expires: 2025-01-01\n"
            "      renewed: [2024-06-30 12:00:00]\n"
        )

        resources = DeclarationLoader(tmp_path).load()

        properties = resources.get("cert").properties
        assert properties == {"expires": "2025-01-01", "renewed": ["2024-06-30T12:00:00"]}


# =============================================================================
# BUNDLED STACK
# =============================================================================


class TestFibonacciStack:
    """The bundled sample stack compiles into a valid graph."""

    CTX = {
        "domain_names": "fib.example.com",
        "certificate_arn": "arn:aws:acm:us-east-1:123456789012:certificate/abc",
    }

    @pytest.fixture
    def resources(self):
        return DeclarationLoader(stack_dir("fibonacci")).load(self.CTX)

    def test_listed(self):
        assert "fibonacci" in list_stacks()

    def test_unknown_stack(self):
        with pytest.raises(DeclarationError, match="Unknown stack"):
            stack_dir("missing")

    def test_order(self, resources):
        ordered = [r.logical_id for r in planner.order(graph.build(resources))]

        assert ordered.index("fibonacciApiVpc") < ordered.index("fibonacciApiCluster")
        assert ordered.index("fibonacciApiCluster") < ordered.index("fibonacciApiBackendService")
        assert ordered.index("websiteBucketPolicy") < ordered.index("cloudfrontDist")
        assert ordered.index("fibonacciApiBackendService") < ordered.index("cloudfrontDist")

    def test_health_check(self, resources):
        service = resources.get("fibonacciApiBackendService")
        assert service.properties["health_check"] == {"path": "/health"}

    def test_cdn_behaviors(self, resources):
        cdn = resources.get("cloudfrontDist").properties

        assert cdn["domain_names"] == "fib.example.com"
        assert cdn["default_behavior"]["viewer_protocol_policy"] == "redirect-to-https"
        assert cdn["default_behavior"]["allowed_methods"] == ["GET", "HEAD", "OPTIONS"]
        (generate,) = cdn["behaviors"]
        assert generate["path_pattern"] == "/generate/*"
        assert generate["origin"]["domain_name"] == Reference("fibonacciApiBackendService", "domain_name")

    def test_outputs(self, resources):
        assert set(resources.outputs) == {"fibonacciApiLoadBalancerUrl", "cloudfrontDomainUrl"}

    def test_requires_stage_settings(self):
        with pytest.raises(DeclarationError, match="domain_names"):
            DeclarationLoader(stack_dir("fibonacci")).load({})
