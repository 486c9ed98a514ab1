"""
Test suite for the command-line interface.
"""

import json

import pytest

from minter.cli import create_parser, main, redact_secrets
from minter.wallet.context import WalletContext

from conftest import TEST_SEED


class TestParser:
    """Tests for argument parsing."""

    def test_mint_arguments(self):
        args = create_parser().parse_args([
            "--network", "preview", "mint", "--token-name", "Coffee#1", "--metadata", "{}",
        ])
        assert args.command == "mint"
        assert args.network == "preview"
        assert args.token_name == "Coffee#1"

    def test_update_status_arguments(self):
        args = create_parser().parse_args([
            "update-status", "--unit", "ab" * 28, "--status", "washed", "--note", "Lot 7",
        ])
        assert args.command == "update-status"
        assert args.recipient is None
        assert args.note == "Lot 7"

    def test_status_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["update-status", "--unit", "ab" * 28])


class TestRedaction:
    """Tests for the log redaction processor."""

    def test_secret_fields_masked(self):
        event = redact_secrets(None, "info", {
            "event": "request_received",
            "seed": TEST_SEED,
            "project_id": "preprodSECRET",
            "unit": "abcd",
        })
        assert event["seed"] == "***"
        assert event["project_id"] == "***"
        assert event["unit"] == "abcd"


class TestCommands:
    """Tests for running commands."""

    def test_address(self, monkeypatch, capsys):
        monkeypatch.setenv("MINTER_SEED", TEST_SEED)
        monkeypatch.setenv("MINTER_NETWORK", "preprod")

        with pytest.raises(SystemExit) as exc_info:
            main(["address"])

        assert exc_info.value.code == 0
        out = capsys.readouterr().out.strip()
        assert out == WalletContext.from_seed(TEST_SEED).address_str

    def test_invalid_seed_reported(self, monkeypatch, capsys):
        monkeypatch.setenv("MINTER_SEED", "not a valid seed phrase at all")

        with pytest.raises(SystemExit) as exc_info:
            main(["address"])

        assert exc_info.value.code == 1
        assert "not a valid seed" not in capsys.readouterr().err

    def test_mint_without_script(self, monkeypatch, capsys):
        monkeypatch.setenv("MINTER_SEED", TEST_SEED)
        monkeypatch.delenv("MINTER_MINT_SCRIPT_CBOR", raising=False)
        monkeypatch.delenv("MINTER_MINT_SCRIPT_PATH", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            main(["mint", "--token-name", "Coffee#1", "--metadata", '{"farmer": "Ana"}'])

        assert exc_info.value.code == 2
        result = json.loads(capsys.readouterr().out)
        assert result == {"status": "failed", "kind": "invalid_script", "reason": result["reason"]}
