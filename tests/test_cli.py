"""
Tests for CLI module.
"""

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tf_migrate.cli import _print_report, main, parse_arguments
from tf_migrate.diagnostics import Diagnostic
from tf_migrate.migrator import MigrationReport
from tf_migrate.utils import setup_logging

RECORD = 'resource "cloudflare_record" "www" {\n  name  = "www"\n  type  = "A"\n  value = "192.0.2.1"\n}\n'


@pytest.mark.unit
class TestPrintReport:
    """Test migration report printing functionality."""

    def test_successful_report(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test printing a successful report."""
        report = MigrationReport(files_migrated=["dns.tf"], files_unchanged=["variables.tf"])

        _print_report(report)
        captured = capsys.readouterr()

        assert "Migration summary" in captured.out
        assert "migrated:  dns.tf" in captured.out
        assert "Files migrated: 1" in captured.out
        assert "Files unchanged: 1" in captured.out
        assert "SUCCESS" in captured.out

    def test_failed_report(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test printing a report with a failed file and diagnostics."""
        report = MigrationReport(
            files_failed=["broken.tf"],
            diagnostics=[Diagnostic("error", "Failed to parse configuration", filename="broken.tf", line=3)],
        )

        _print_report(report)
        captured = capsys.readouterr()

        assert "FAILED:    broken.tf" in captured.out
        assert "error: broken.tf:3: Failed to parse configuration" in captured.out
        assert "Errors: 1" in captured.out
        assert "Result: FAILED" in captured.out

    def test_dry_run_title(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test that dry runs are labelled as such."""
        _print_report(MigrationReport(dry_run=True))
        captured = capsys.readouterr()
        assert "Migration summary (dry run)" in captured.out


@pytest.mark.unit
class TestSetupLogging:
    """Test setup_logging verbosity levels."""

    def _run(self, tmp_path: Path, *, verbose: bool) -> tuple[int, list[logging.Handler]]:
        root_logger = logging.getLogger()
        original_handlers = root_logger.handlers[:]
        original_level = root_logger.level
        root_logger.handlers.clear()

        try:
            setup_logging(verbose=verbose, log_file=str(tmp_path / "tf-migrate.log"))
            return root_logger.level, root_logger.handlers[:]
        finally:
            for h in root_logger.handlers:
                h.close()
            root_logger.handlers = original_handlers
            root_logger.setLevel(original_level)

    def test_default_level_is_info(self, tmp_path: Path) -> None:
        """Without --verbose the root logger level should be INFO."""
        level, _ = self._run(tmp_path, verbose=False)
        assert level == logging.INFO

    def test_verbose_level_is_debug(self, tmp_path: Path) -> None:
        """With --verbose the root logger level should be DEBUG."""
        level, _ = self._run(tmp_path, verbose=True)
        assert level == logging.DEBUG

    def test_log_file_handler(self, tmp_path: Path) -> None:
        """Logs go to the console and to the log file."""
        _, handlers = self._run(tmp_path, verbose=False)
        assert any(isinstance(h, logging.FileHandler) for h in handlers)
        assert any(type(h) is logging.StreamHandler for h in handlers)


@pytest.mark.unit
class TestParseArguments:
    """Test command line argument parsing."""

    def test_defaults(self) -> None:
        args = parse_arguments([])
        assert args.config_dir is None
        assert args.state_file is None
        assert not args.dry_run
        assert not args.no_backup
        assert args.workers is None

    def test_all_options(self) -> None:
        args = parse_arguments(
            [
                "--config-dir",
                "infra",
                "--state-file",
                "terraform.tfstate",
                "--resources",
                "cloudflare_record,cloudflare_list",
                "--source-version",
                "v4",
                "--target-version",
                "v5",
                "--dry-run",
                "--no-backup",
                "-r",
                "--workers",
                "4",
            ]
        )
        assert args.config_dir == "infra"
        assert args.state_file == "terraform.tfstate"
        assert args.resources == "cloudflare_record,cloudflare_list"
        assert args.recursive
        assert args.workers == 4


@pytest.mark.unit
class TestMain:
    """Test the main entry point."""

    def test_list_rules(self, capsys: pytest.CaptureFixture[str]) -> None:
        """--list-rules prints the rules and exits successfully."""
        with patch("sys.argv", ["tf-migrate", "--list-rules"]), patch("tf_migrate.cli.setup_logging"):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 0

        captured = capsys.readouterr()
        assert "v4 -> v5:" in captured.out
        assert "cloudflare_record, cloudflare_dns_record -> cloudflare_dns_record" in captured.out
        assert "data.cloudflare_zones" in captured.out

    def test_missing_input_is_an_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Running without inputs prints an error and exits with 1."""
        with patch("sys.argv", ["tf-migrate"]), patch("tf_migrate.cli.setup_logging"):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 1

        captured = capsys.readouterr()
        assert "Error: Nothing to migrate" in captured.err

    def test_unsupported_version_path(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with (
            patch("sys.argv", ["tf-migrate", "--config-dir", str(tmp_path), "--target-version", "v6"]),
            patch("tf_migrate.cli.setup_logging"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 1

        assert "Unsupported migration path v4 -> v6" in capsys.readouterr().err

    def test_migrates_directory(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """A successful run rewrites the files and exits with 0."""
        (tmp_path / "dns.tf").write_text(RECORD)

        with (
            patch("sys.argv", ["tf-migrate", "--config-dir", str(tmp_path), "--no-backup"]),
            patch("tf_migrate.cli.setup_logging"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 0

        assert 'resource "cloudflare_dns_record" "www"' in (tmp_path / "dns.tf").read_text()
        assert not (tmp_path / "dns.tf.backup").exists()
        assert "migrated:  dns.tf" in capsys.readouterr().out

    def test_migrates_state_to_output(self, tmp_path: Path) -> None:
        state = {
            "version": 4,
            "resources": [
                {
                    "mode": "managed",
                    "type": "cloudflare_record",
                    "name": "www",
                    "instances": [{"schema_version": 3, "attributes": {"id": "1", "type": "A", "value": "192.0.2.1"}}],
                }
            ],
        }
        state_file = tmp_path / "terraform.tfstate"
        state_file.write_text(json.dumps(state))
        output = tmp_path / "migrated.tfstate"

        with (
            patch("sys.argv", ["tf-migrate", "--state-file", str(state_file), "--output-state", str(output)]),
            patch("tf_migrate.cli.setup_logging"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 0

        assert json.loads(state_file.read_text()) == state
        migrated = json.loads(output.read_text())
        assert migrated["resources"][0]["type"] == "cloudflare_dns_record"

    def test_failed_run_exits_with_1(self) -> None:
        """A report with failures makes the command fail."""
        with (
            patch("sys.argv", ["tf-migrate", "--config-dir", "."]),
            patch("tf_migrate.cli.setup_logging"),
            patch("tf_migrate.cli.TerraformMigrator") as mock_migrator,
        ):
            mock_instance = MagicMock()
            mock_instance.migrate.return_value = MigrationReport(files_failed=["broken.tf"])
            mock_migrator.return_value = mock_instance

            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 1

            mock_migrator.assert_called_once()

    def test_settings_are_forwarded(self) -> None:
        """Command line options reach the migrator's settings."""
        with (
            patch("sys.argv", ["tf-migrate", "--config-dir", ".", "--resources", "cloudflare_list", "--dry-run"]),
            patch("tf_migrate.cli.setup_logging"),
            patch("tf_migrate.cli.TerraformMigrator") as mock_migrator,
        ):
            mock_instance = MagicMock()
            mock_instance.migrate.return_value = MigrationReport(dry_run=True)
            mock_migrator.return_value = mock_instance

            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 0

            settings, _ = mock_migrator.call_args.args
            assert settings.resources == frozenset({"cloudflare_list"})
            assert settings.dry_run
