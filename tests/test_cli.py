"""
End-to-end CLI tests against a temporary state directory.
"""

import json

import pytest

from cli.main import main


@pytest.fixture
def run(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("ANCESTRY_STORE_ADDRESS", raising=False)
    monkeypatch.delenv("ANCESTRY_STRICT_LEDGER", raising=False)

    def _run(*argv):
        main(["--out", str(tmp_path), *argv])
        return capsys.readouterr().out
    return _run


def test_submit_verify_flow(run):
    out = run("init-oracle")
    assert "Oracle keys created" in out

    out = run("submit", "--caller", "alice", "--value", "42", "--metadata", "5", "--id", "r1")
    assert "id: r1" in out

    assert "🔒 encrypted" in run("list")

    out = run("verify", "--id", "r1", "--caller", "alice")
    assert "r1: 42 (verified now)" in out

    out = run("verify", "--id", "r1", "--caller", "bob")
    assert "r1: 42 (already verified)" in out

    shown = json.loads(run("show", "--id", "r1"))
    assert shown["is_analyzed"] is True
    assert shown["decrypted_similarity"] == 42
    assert shown["schema"] == "ancestry-ledger/v1"

    analysis = json.loads(run("analyze", "--id", "r1"))
    assert analysis["verified"] is True
    assert analysis["genetic_markers"] == 27

    stats = json.loads(run("stats"))
    assert stats == {"total": 1, "verified": 1, "average_metadata": 5.0}

    assert "Ledger verify (hash chain, 2 blocks)" in run("verify-ledger")


def test_init_oracle_idempotent(run):
    run("init-oracle")
    assert "already exist" in run("init-oracle")


def test_duplicate_submit_exits(run):
    run("submit", "--caller", "alice", "--value", "1", "--id", "r1")
    with pytest.raises(SystemExit) as exc:
        run("submit", "--caller", "bob", "--value", "2", "--id", "r1")
    assert exc.value.code == 1


def test_missing_record_exits(run, capsys):
    with pytest.raises(SystemExit):
        run("verify", "--id", "nope", "--caller", "alice")
    assert "NOT_FOUND" in capsys.readouterr().out


def test_out_of_range_value_exits(run):
    with pytest.raises(SystemExit):
        run("submit", "--caller", "alice", "--value", str(2**32))


def test_tampered_ledger_fails(run, tmp_path):
    run("submit", "--caller", "alice", "--value", "1", "--id", "r1")
    path = tmp_path / "ledger.jsonl"
    path.write_text(path.read_text().replace('"caller":"alice"', '"caller":"mallory"'))

    with pytest.raises(SystemExit):
        run("verify-ledger")
    with pytest.raises(SystemExit):
        run("list")


def test_unreadable_ledger_line_reports_block(run, tmp_path, capsys):
    run("submit", "--caller", "alice", "--value", "1", "--id", "r1")
    with open(tmp_path / "ledger.jsonl", "a", encoding="utf-8") as f:
        f.write("{truncated\n")

    with pytest.raises(SystemExit):
        run("verify-ledger")
    assert "FAILED at block 1" in capsys.readouterr().out
