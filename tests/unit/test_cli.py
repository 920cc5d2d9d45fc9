"""Tests for the command line entry point."""

import json
from unittest.mock import MagicMock, patch

import pytest

from recharge_engine.__main__ import build_parser, main, run_sweep_once
from recharge_engine.config import ConfigurationError
from recharge_engine.models import SweepReport

from support import START_TIME


class TestParser:
    def test_serve_options(self):
        args = build_parser().parse_args(["serve", "--port", "9000", "--log-level", "DEBUG"])

        assert args.command == "serve"
        assert args.port == 9000
        assert args.log_level == "DEBUG"

    def test_sweep_has_no_server_options(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sweep", "--port", "9000"])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    @pytest.mark.parametrize("argv", [[], ["--port", "9000"]])
    def test_defaults_to_serve(self, argv, monkeypatch):
        monkeypatch.delenv("CONFIG_PATH", raising=False)
        with patch("recharge_engine.__main__.serve", return_value=0) as serve, \
                patch.dict("os.environ", {}, clear=False):
            with pytest.raises(SystemExit) as exc:
                main(argv)

        assert exc.value.code == 0
        assert serve.call_args[0][0].command == "serve"

    def test_sweep_command(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        with patch("recharge_engine.__main__.run_sweep_once", return_value=1) as sweep, \
                patch.dict("os.environ", {}, clear=False):
            with pytest.raises(SystemExit) as exc:
                main(["sweep", "--log-format", "console"])

        assert exc.value.code == 1
        sweep.assert_called_once_with("INFO", False)


class TestRunSweepOnce:
    @pytest.fixture
    def scheduler(self):
        scheduler = MagicMock()
        with patch("recharge_engine.services.reminder_scheduler.get_reminder_scheduler", return_value=scheduler), \
                patch("recharge_engine.logging_config.configure_logging"):
            yield scheduler

    def test_prints_report(self, scheduler, capsys):
        scheduler.run_tick.return_value = SweepReport(started_at=START_TIME, checked=4, sent=1)

        assert run_sweep_once("INFO", True) == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["checked"] == 4
        assert printed["sent"] == 1

    def test_sweep_already_running(self, scheduler):
        scheduler.run_tick.return_value = None
        assert run_sweep_once("INFO", True) == 1

    def test_bad_configuration(self, scheduler):
        scheduler.run_tick.side_effect = ConfigurationError("missing file")
        assert run_sweep_once("INFO", True) == 2
