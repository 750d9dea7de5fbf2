"""
Tests for the CLI module.
"""

import json
from pathlib import Path

import pytest
from flowwright.cli import export_flow, load_flow, load_variables, main, safe_name
from flowwright.core.serialization import JsonSerializer
from flowwright.errors import StructuralError

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


@pytest.fixture
def flow_file(tmp_path, checkout_flow):
    path = tmp_path / "checkout.json"
    path.write_text(JsonSerializer.to_json(checkout_flow), encoding="utf-8")
    return path


class TestHelpers:
    """Tests for the loading and naming helpers."""

    def test_safe_name(self):
        assert safe_name("Checkout Smoke Test") == "checkout_smoke_test"
        assert safe_name("a/b c!") == "a_b_c"
        assert safe_name("!!!") == "flow"

    def test_load_flow(self, flow_file):
        flow = load_flow(flow_file)
        assert flow.name == "Checkout Smoke Test"
        assert len(flow) == 23

    def test_load_missing_flow(self, tmp_path):
        with pytest.raises(StructuralError, match="Cannot read"):
            load_flow(tmp_path / "nope.json")

    def test_load_variables_shapes(self, tmp_path):
        """Variables may be a bare list, a list of names or wrapped in an object."""
        listed = tmp_path / "listed.json"
        listed.write_text(json.dumps(["user", {"name": "password", "description": "Secret"}]))
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"variables": [{"name": "user"}]}))

        assert load_variables(listed) == [{"name": "user"}, {"name": "password", "description": "Secret"}]
        assert load_variables(wrapped) == [{"name": "user"}]
        assert load_variables(None) == []

    def test_export_flow_formats(self, tmp_path, checkout_flow):
        """Each format writes one file named after the flow."""
        written = {
            fmt: export_flow(checkout_flow, tmp_path, fmt, [{"name": "product"}])
            for fmt in ("python", "typescript", "graphviz", "json")
        }

        assert written["python"][0].name == "test_checkout_smoke_test.py"
        assert written["typescript"][0].name == "checkout_smoke_test.spec.ts"
        assert written["graphviz"][0].name == "checkout_smoke_test.dot"
        assert written["json"][0].name == "checkout_smoke_test.json"
        assert all(path.exists() for path, _ in written.values())
        assert written["python"][1] == []

    def test_export_flow_reports_warnings(self, tmp_path, checkout_flow):
        _, warnings = export_flow(checkout_flow, tmp_path, "python")
        assert warnings == ["Variable '${product}' in step search is not declared; left as literal text"]

    def test_export_flow_unknown_format(self, tmp_path, checkout_flow):
        with pytest.raises(ValueError, match="Unknown format"):
            export_flow(checkout_flow, tmp_path, "cobol")


class TestCommands:
    """Tests for the subcommands run through main()."""

    def test_generate_python(self, flow_file, tmp_path, capsys):
        out = tmp_path / "build"

        assert main(["generate", str(flow_file), "-o", str(out)]) == 0

        generated = out / "test_checkout_smoke_test.py"
        assert generated.exists()
        assert "def test_checkout_smoke_test(page: Page) -> None:" in generated.read_text()
        captured = capsys.readouterr()
        assert str(generated) in captured.out
        assert "Warning: Variable '${product}'" in captured.err

    def test_generate_typescript_with_variables(self, flow_file, tmp_path, capsys):
        out = tmp_path / "build"
        variables = tmp_path / "vars.json"
        variables.write_text(json.dumps(["product"]))

        code = main(["generate", str(flow_file), "-o", str(out), "-f", "typescript", "--variables", str(variables)])

        assert code == 0
        assert "let product = '';" in (out / "checkout_smoke_test.spec.ts").read_text()
        assert "Warning" not in capsys.readouterr().err

    def test_graph(self, flow_file, tmp_path):
        out = tmp_path / "dot"

        assert main(["graph", str(flow_file), "-o", str(out)]) == 0
        assert "cluster_frame_0" in (out / "checkout_smoke_test.dot").read_text()

    def test_validate_summary(self, flow_file, capsys):
        assert main(["validate", str(flow_file)]) == 0

        out = capsys.readouterr().out
        assert 'Flow "Checkout Smoke Test": 23 nodes' in out
        assert "groups: 4 (max depth 2)" in out
        assert "loop each-result..each-result-end: 5 inner steps" in out
        assert "frame contexts: 1" in out

    def test_validate_broken_flow(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({
            "name": "Broken",
            "nodes": [{"id": "b", "kind": "branch", "payload": {"selector": "#x"}}],
            "edges": [],
        }))

        assert main(["validate", str(path)]) == 1
        assert "has no pairId" in capsys.readouterr().err

    def test_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json")

        assert main(["validate", str(path)]) == 1
        assert "not valid JSON" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        assert main(["generate", str(tmp_path / "missing.json")]) == 1
        assert "File not found" in capsys.readouterr().err

    def test_directory_is_rejected(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path)]) == 1
        assert "Not a file" in capsys.readouterr().err

    def test_bundled_example(self, tmp_path):
        """The example flow in the repository generates cleanly with its variables."""
        code = main([
            "generate", str(EXAMPLES / "login_flow.json"), "-o", str(tmp_path),
            "--variables", str(EXAMPLES / "login_variables.json"),
        ])

        assert code == 0
        source = (tmp_path / "test_login.py").read_text()
        assert 'page.goto(f"{baseUrl}/login")' in source
        assert "heading = page.locator(\"h1\").first.text_content()" in source
