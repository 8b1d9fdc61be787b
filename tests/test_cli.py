"""Smoke tests for the click CLI. Verification itself is stubbed out."""

import json

from click.testing import CliRunner

from citation_verifier import cli
from citation_verifier.models import ReferenceStatus

REFERENCES = [
    {
        "id": "1",
        "title": "Attention is all you need",
        "authors": ["Vaswani, A."],
        "year": 2017,
        "DOI": "10.5555/3295222.3295349",
        "raw": "Vaswani, A. (2017). Attention is all you need.",
    },
    {
        "id": "2",
        "title": "Attention is all you need",
        "authors": ["Vaswani, A."],
        "raw": "Vaswani (2017) Attention is all you need",
    },
]


def _stub_run_batch(calls):
    async def fake_run_batch(references, strategy, model, concurrency, max_iterations):
        calls.append(
            {"ids": [r.id for r in references], "strategy": strategy, "concurrency": concurrency}
        )
        return [
            r.model_copy(update={"status": ReferenceStatus.VERIFIED, "message": "ok"})
            for r in references
        ]

    return fake_run_batch


class TestCli:
    def test_help_lists_commands(self):
        result = CliRunner().invoke(cli.main, ["--help"])
        assert result.exit_code == 0
        for command in ("verify", "check", "batch"):
            assert command in result.output

    def test_verify_writes_results(self, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "_run_batch", _stub_run_batch(calls))
        source = tmp_path / "refs.json"
        source.write_text(json.dumps({"references": REFERENCES}))
        output = tmp_path / "out.json"

        result = CliRunner().invoke(
            cli.main,
            ["verify", str(source), "-o", str(output), "--strategy", "waterfall", "--concurrency", "2"],
        )

        assert result.exit_code == 0, result.output
        assert "Verified: 2" in result.output
        assert calls == [{"ids": ["1", "2"], "strategy": "waterfall", "concurrency": 2}]
        written = json.loads(output.read_text())
        assert written["stats"]["total"] == 2
        assert written["references"][0]["DOI"] == "10.5555/3295222.3295349"

    def test_verify_dedupe_and_bare_list(self, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "_run_batch", _stub_run_batch(calls))
        source = tmp_path / "refs.json"
        source.write_text(json.dumps(REFERENCES))

        result = CliRunner().invoke(
            cli.main, ["verify", str(source), "-o", str(tmp_path / "out.json"), "--dedupe"]
        )

        assert result.exit_code == 0, result.output
        assert calls[0]["ids"] == ["1"]

    def test_check_single_reference(self, monkeypatch):
        async def fake_run_single(reference, strategy, model):
            return reference.model_copy(
                update={
                    "status": ReferenceStatus.NEEDS_HUMAN,
                    "message": "Year differs",
                    "checks_performed": ["DOI Lookup"],
                }
            )

        monkeypatch.setattr(cli, "_run_single", fake_run_single)

        result = CliRunner().invoke(
            cli.main, ["check", "Vaswani (2017) Attention is all you need", "--doi", "10.1/x"]
        )

        assert result.exit_code == 0, result.output
        assert "Status: needs-human" in result.output
        assert "Checks: DOI Lookup" in result.output

    def test_missing_file(self):
        result = CliRunner().invoke(cli.main, ["verify", "does-not-exist.json"])
        assert result.exit_code != 0
