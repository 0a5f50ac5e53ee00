"""
Test Suite for the CLI
======================
Smoke tests for the click commands.
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from docstructure.cli import cli


CONTRACT_TEXT = (
    "1. PREDMET\n"
    "Ovim ugovorom se uređuje predmet.\n"
    "\n"
    "2. OPLATA\n"
    "Plaćanje se vrši u roku od 30 dana."
)


class TestCli:
    """Test command wiring and exit codes."""

    def test_analyze_json_output(self, tmp_path):
        source = tmp_path / "contract.txt"
        source.write_text(CONTRACT_TEXT, encoding="utf-8")
        saved = tmp_path / "structure.json"

        result = CliRunner().invoke(cli, [
            "analyze", str(source), "--json-output", "-o", str(saved),
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [s["title"] for s in data["sections"]] == ["1. PREDMET", "2. OPLATA"]
        assert json.loads(saved.read_text(encoding="utf-8"))["document_id"] == (
            data["document_id"]
        )

    def test_analyze_missing_file(self, tmp_path):
        result = CliRunner().invoke(cli, ["analyze", str(tmp_path / "missing.txt")])
        assert result.exit_code != 0

    def test_parse_response_json_output(self, tmp_path):
        response = tmp_path / "reply.txt"
        response.write_text(
            '```json\n{"section_translations": '
            '[{"anchor": "A", "translated_content": "text"}]}\n```',
            encoding="utf-8",
        )

        result = CliRunner().invoke(cli, [
            "parse-response", str(response),
            "--schema", "translation_response",
            "--schema-type", "translation",
            "--anchor", "A",
            "--json-output",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["outcome"] == "valid_primary"
        assert data["valid_anchor_count"] == 1

    def test_parse_response_invalid_exit_code(self, tmp_path):
        response = tmp_path / "reply.txt"
        response.write_text("no json here", encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "parse-response", str(response), "--json-output",
        ])
        assert result.exit_code == 1

    def test_sample_is_reproducible(self):
        runner = CliRunner()
        first = runner.invoke(cli, ["sample", "general_response", "--seed", "3"])
        second = runner.invoke(cli, ["sample", "general_response", "--seed", "3"])

        assert first.exit_code == 0
        assert first.output == second.output
        assert "result" in json.loads(first.output)

    def test_sample_unknown_schema(self):
        result = CliRunner().invoke(cli, ["sample", "nope"])
        assert result.exit_code == 1

    def test_schemas_and_batch(self, tmp_path):
        (tmp_path / "a.txt").write_text(CONTRACT_TEXT, encoding="utf-8")
        (tmp_path / "b.txt").write_text("GENERAL\nBody text.", encoding="utf-8")
        out_dir = tmp_path / "out"
        runner = CliRunner()

        assert runner.invoke(cli, ["schemas"]).exit_code == 0

        result = runner.invoke(cli, ["batch", str(tmp_path), "-o", str(out_dir)])
        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in out_dir.iterdir()) == [
            "a_structure.json",
            "b_structure.json",
        ]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
