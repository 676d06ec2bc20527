"""Unit tests for the command line entry point."""

import json

from inbox_triage.cli import build_parser, main
from inbox_triage.core.ledger import OutcomeLedger
from inbox_triage.core.models import OutcomeStatus


class TestCli:
    """Tests for argument parsing and the status command."""

    def test_parser_global_options(self):
        args = build_parser().parse_args(["--dry-run", "--state-path", "/tmp/s.json", "serve", "--port", "9000"])

        assert args.dry_run is True
        assert args.state_path == "/tmp/s.json"
        assert args.command == "serve"
        assert args.port == 9000

    def test_status_prints_snapshot(self, state_path, capsys):
        """Test `status` reads the state file and prints the view as JSON."""
        ledger = OutcomeLedger(state_path)
        ledger.record("m1", OutcomeStatus.OK, tokens=100, latency_ms=1000)
        ledger.add_token_event(100, 1000)
        ledger.persist()

        exit_code = main(["--state-path", str(state_path), "status", "--limit", "5"])

        assert exit_code == 0
        out = capsys.readouterr().out
        # Log lines may share stdout; the view is the indented document at the end.
        view = json.loads(out[out.index("{\n"):])
        assert view["processed_count"] == 1
        assert view["stats"]["llm_tps"] == {"samples": 1, "avg_tps": 100.0}
