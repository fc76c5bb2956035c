"""Tests for the command-line entrypoint."""

import argparse
from unittest.mock import AsyncMock, patch

import pytest

from genart.api import cli
from genart.core.errors import JobTimeoutError, TransportError


class TestParseParam:
    def test_json_values(self):
        assert cli.parse_param("steps=20") == ("steps", 20)
        assert cli.parse_param("tiling=true") == ("tiling", True)

    def test_plain_string_value(self):
        assert cli.parse_param("sampler=euler a") == ("sampler", "euler a")

    def test_value_may_contain_equals(self):
        assert cli.parse_param("negative=a=b") == ("negative", "a=b")

    @pytest.mark.parametrize("text", ["steps", "=20"])
    def test_malformed(self, text):
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_param(text)


class TestMain:
    def test_parser_collects_params(self):
        args = cli.build_parser().parse_args(["a red fox", "--param", "steps=20", "--endpoint", "local"])

        assert args.prompt == "a red fox"
        assert dict(args.param) == {"steps": 20}
        assert args.endpoint == "local"

    def test_unknown_endpoint_is_usage_error(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["a red fox", "--endpoint", "nope"])

    def test_success(self, capsys):
        with patch.object(cli, "run", AsyncMock(return_value=["img"])):
            assert cli.main(["a red fox"]) == 0
        assert "1 image(s) received." in capsys.readouterr().out

    def test_timeout_exit_code(self):
        with patch.object(cli, "run", AsyncMock(side_effect=JobTimeoutError("late"))):
            assert cli.main(["a red fox"]) == 2

    def test_failure_exit_code(self, capsys):
        with patch.object(cli, "run", AsyncMock(side_effect=TransportError("down"))):
            assert cli.main(["a red fox"]) == 1
        assert "Generation failed: down" in capsys.readouterr().out

    def test_unknown_configured_endpoint_exit_code(self, capsys):
        with patch.object(cli, "run", AsyncMock(side_effect=ValueError("Unknown image endpoint: nope"))):
            assert cli.main(["a red fox"]) == 1
        assert "Unknown image endpoint" in capsys.readouterr().out
