"""Tests for CLI commands.

These tests verify that all CLI commands are properly registered and callable.
"""

import importlib
from pathlib import Path
from unittest.mock import MagicMock, patch

from ledgerflow.config import Config, PipelineConfig, StoreConfig, load_config
from ledgerflow.pipeline.processor import ProcessingResult, ProcessingStatus
from ledgerflow.runner.main import cmd_balance, cmd_process, cmd_rules_generate, create_cli, main
from ledgerflow.schemas import Account

from conftest import USER_ID, make_transaction

# The runner package re-exports main(), which shadows the module attribute
cli_main = importlib.import_module("ledgerflow.runner.main")


def make_config(tmp_path: Path, **pipeline) -> Config:
    config = Config(
        store=StoreConfig(base_url="http://store.test", service_key="key"),
        pipeline=PipelineConfig(default_user_id=USER_ID, **pipeline),
    )
    config.extractor.api_key = "gemini-key"
    config.cache.db_path = tmp_path / "cache.db"
    return config


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self) -> None:
        """Verify all expected commands are registered."""
        parser = create_cli()

        subparsers_action = None
        for action in parser._actions:
            if action.dest == "command":
                subparsers_action = action
                break

        assert subparsers_action is not None
        commands = set(subparsers_action.choices.keys())
        assert commands == {"process", "balance", "rules", "init-config"}

    def test_process_command_options(self) -> None:
        """Process command should accept --user-id, --source and --json."""
        parser = create_cli()

        args = parser.parse_args(
            ["process", "20k rappi", "--user-id", "u-9", "--source", "telegram", "--json"]
        )
        assert args.text == "20k rappi"
        assert args.user_id == "u-9"
        assert args.source == "telegram"
        assert args.json is True

    def test_rules_subcommands(self) -> None:
        """Test rules subcommands."""
        parser = create_cli()

        args = parser.parse_args(["rules", "generate-accounts", "--apply"])
        assert args.rules_command == "generate-accounts"
        assert args.apply is True

        args = parser.parse_args(["rules", "list"])
        assert args.rules_command == "list"

    def test_no_command_prints_help(self, capsys) -> None:
        """Test no command prints help."""
        assert main([]) == 1


class TestInitConfig:
    """Tests for the init-config command."""

    def test_writes_loadable_config(self, tmp_path) -> None:
        """Test writes loadable config."""
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0

        config = load_config(path)
        assert config.store.service_key == "YOUR_SERVICE_KEY"
        assert config.pipeline.fallback_institutions == ["cash", "bancolombia"]

    def test_refuses_to_overwrite(self, tmp_path) -> None:
        """Test refuses to overwrite."""
        path = tmp_path / "config.yaml"
        path.write_text("store: {}\n")

        assert main(["-c", str(path), "init-config"]) == 1
        assert path.read_text() == "store: {}\n"
        assert main(["-c", str(path), "init-config", "--force"]) == 0


class TestCommands:
    """Tests for command handlers."""

    def test_process_rejects_invalid_config(self, tmp_path, capsys) -> None:
        """Test process rejects invalid config."""
        config = make_config(tmp_path)
        config.extractor.api_key = ""

        assert cmd_process(config, "20k rappi") == 1
        assert "extractor.api_key is required" in capsys.readouterr().out

    @patch.object(cli_main, "GeminiExtractor")
    @patch.object(cli_main, "MessageProcessor")
    def test_process_prints_result(self, mock_processor_class, mock_extractor_class, tmp_path, capsys) -> None:
        """Test process prints result."""
        mock_extractor_class.return_value.__enter__.return_value = MagicMock()
        mock_processor_class.return_value.process.return_value = ProcessingResult(
            status=ProcessingStatus.SUCCESS,
            transactions=[make_transaction(id="tx-1")],
        )

        assert cmd_process(make_config(tmp_path), "20k rappi") == 0
        out = capsys.readouterr().out
        assert "Transaction registered" in out
        assert "acc-bancolombia" in out

    @patch.object(cli_main, "GeminiExtractor")
    @patch.object(cli_main, "MessageProcessor")
    def test_process_reports_inconsistent_failure(
        self, mock_processor_class, mock_extractor_class, tmp_path, capsys
    ) -> None:
        """Test process reports inconsistent failure."""
        mock_extractor_class.return_value.__enter__.return_value = MagicMock()
        mock_processor_class.return_value.process.return_value = ProcessingResult(
            status=ProcessingStatus.FAILED,
            transactions=[make_transaction(id="tx-1")],
            error="Store API error 503: Service unavailable",
            inconsistent=True,
        )

        assert cmd_process(make_config(tmp_path), "transfer") == 1
        out = capsys.readouterr().out
        assert "needs repair" in out
        assert "tx-1" in out

    @patch.object(cli_main, "_store")
    def test_balance(self, mock_store, tmp_path, capsys) -> None:
        """Test balance."""
        mock_store.return_value.get_account_balance.return_value = 42000

        assert cmd_balance(make_config(tmp_path), "acc-1") == 0
        assert "42000" in capsys.readouterr().out

    @patch.object(cli_main, "_store")
    def test_balance_unknown_account(self, mock_store, tmp_path) -> None:
        """Test balance unknown account."""
        mock_store.return_value.get_account_balance.return_value = None
        assert cmd_balance(make_config(tmp_path), "acc-ghost") == 1

    @patch.object(cli_main, "_store")
    def test_generate_account_rules_preview(self, mock_store, tmp_path, capsys) -> None:
        """Test generate account rules preview."""
        mock_store.return_value.list_accounts.return_value = [
            Account(id="acc-1", user_id=USER_ID, name="Debito", institution="bancolombia", last_four="7799"),
        ]

        assert cmd_rules_generate(make_config(tmp_path), None, apply=False) == 0

        out = capsys.readouterr().out
        assert "Account: Debito" in out
        mock_store.return_value.bulk_create_rules.assert_not_called()

    @patch.object(cli_main, "_store")
    def test_generate_account_rules_apply(self, mock_store, tmp_path) -> None:
        """Test generate account rules apply."""
        mock_store.return_value.list_accounts.return_value = [
            Account(id="acc-1", user_id=USER_ID, name="Debito", institution="bancolombia", last_four="7799"),
        ]
        mock_store.return_value.bulk_create_rules.return_value = [MagicMock()]

        assert cmd_rules_generate(make_config(tmp_path), None, apply=True) == 0
        (rules,) = mock_store.return_value.bulk_create_rules.call_args.args
        assert rules[0].actions.set_account == "acc-1"
