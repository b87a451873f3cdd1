"""Tests for the command line entry point."""

import socket

import pytest

import dynamo.__main__ as cli
from dynamo.codecs import decode_line
from dynamo.models import FormatKind


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(cli, "install_signal_handlers", lambda shutdown: None)
    for key in ("DYNAMO_RATE", "DYNAMO_TARGET", "DYNAMO_SCENARIOS", "DYNAMO_COUNT"):
        monkeypatch.delenv(key, raising=False)


def _unused_port():
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class TestScenarios:
    def test_lists_library(self, capsys):
        assert cli.main(["scenarios"]) == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "http" in out and "storedog" in out
        assert "vpc" in out and "aws.vpc_flow_logs" in out


class TestEmit:
    def test_stdout_stream(self, capsys):
        code = cli.main(["emit", "--target", "-", "--count", "30", "--rate", "1000", "--seed", "1",
                         "--anomaly-offset", "10"])
        assert code == cli.EXIT_OK

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 30
        assert all(decode_line(line)[0] == FormatKind.HTTP for line in lines)
        assert sum("card_number=" in line for line in lines) == 1

    def test_two_scenarios(self, capsys):
        code = cli.main(["emit", "-t", "-", "-n", "5", "-r", "1000", "-s", "http", "-s", "vpc"])
        assert code == cli.EXIT_OK
        kinds = [decode_line(line)[0] for line in capsys.readouterr().out.splitlines()]
        assert kinds.count(FormatKind.HTTP) == 5
        assert kinds.count(FormatKind.VPC_FLOW) == 5

    def test_seed_is_reproducible(self, capsys):
        argv = ["emit", "-t", "-", "-n", "25", "-r", "1000", "--seed", "7", "--anomaly-offset", "3"]
        cli.main(argv)
        first = capsys.readouterr().out.splitlines()
        cli.main(argv)
        second = capsys.readouterr().out.splitlines()

        def strip_time(line):
            kind, fields = decode_line(line)
            return {k: v for k, v in fields.items() if k != "time"}

        assert [strip_time(l) for l in first] == [strip_time(l) for l in second]


class TestExitCodes:
    def test_unknown_scenario(self):
        assert cli.main(["emit", "-t", "-", "-s", "nope", "-n", "1"]) == cli.EXIT_CONFIG

    def test_bad_target(self):
        assert cli.main(["emit", "-t", "ftp://example.com", "-n", "1"]) == cli.EXIT_CONFIG

    def test_invalid_rate(self):
        assert cli.main(["emit", "-t", "-", "-r", "0", "-n", "1"]) == cli.EXIT_CONFIG

    def test_missing_config_file(self, tmp_path):
        assert cli.main(["emit", "-c", str(tmp_path / "absent.yaml")]) == cli.EXIT_CONFIG

    def test_unreachable_collector(self):
        target = f"tcp://127.0.0.1:{_unused_port()}"
        code = cli.main(["emit", "-t", target, "-n", "1", "--max-retries", "0"])
        assert code == cli.EXIT_TRANSPORT

    def test_missing_subcommand(self):
        with pytest.raises(SystemExit):
            cli.main([])
