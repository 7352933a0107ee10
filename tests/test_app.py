"""命令行入口测试。"""

from __future__ import annotations

import os
import signal
import sys
from unittest import mock

import pytest

from proc_deputy.app import (
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
    EXIT_USAGE,
    _merge_config,
    main,
    parse_args,
    run_command,
)
from proc_deputy.config import Config, reload_config
from proc_deputy.runtime import ErrorSource, ProcessSpec
from proc_deputy.signal_manager import SignalManager


@pytest.fixture(autouse=True)
def clean_config():
    """每个测试使用不含 DEPUTY_* 变量的配置。"""
    env = {k: v for k, v in os.environ.items() if not k.startswith("DEPUTY_")}
    with mock.patch.dict(os.environ, env, clear=True):
        reload_config()
        yield
    reload_config()


def python(code: str) -> list[str]:
    return ["--", sys.executable, "-c", code]


class TestParseArgs:
    """参数解析测试。"""

    def test_defaults(self):
        args = parse_args(["--", "make", "test"])
        assert args.timeout is None
        assert args.errors is None
        assert args.log_stdout is False
        assert args.cmd[-2:] == ["make", "test"]

    def test_options(self):
        args = parse_args(
            ["--timeout", "1.5", "--errors", "both", "--log-stdout", "--", "make"]
        )
        assert args.timeout == 1.5
        assert args.errors == "both"
        assert args.log_stdout is True

    def test_invalid_errors(self):
        with pytest.raises(SystemExit):
            parse_args(["--errors", "everything", "--", "make"])

    def test_merge_overrides_environment(self):
        config = Config(timeout=10, errors=ErrorSource.STDOUT)
        merged = _merge_config(config, parse_args(["--timeout", "2", "--errors", "stderr", "--", "x"]))

        assert merged.timeout == 2
        assert merged.errors is ErrorSource.STDERR
        assert config.timeout == 10

    def test_merge_keeps_environment(self):
        config = Config(timeout=10, log_stderr=True)
        merged = _merge_config(config, parse_args(["--", "x"]))
        assert merged.timeout == 10
        assert merged.log_stderr is True


class TestMain:
    """main() 退出码测试。"""

    def test_success(self, capfd: pytest.CaptureFixture[str]):
        code = main(python("print('hello from child')"))

        assert code == 0
        assert "hello from child" in capfd.readouterr().out

    def test_exit_code_passed_through(self):
        assert main(python("import sys; sys.exit(3)")) == 3

    def test_errors_stderr(self, capfd: pytest.CaptureFixture[str]):
        code = main(
            ["--errors", "stderr"]
            + python("import sys; sys.stderr.write('boom\\n'); sys.exit(1)")
        )

        assert code == 1
        assert "exit status 1: boom" in capfd.readouterr().err

    @pytest.mark.timeout(10)
    def test_timeout(self, capfd: pytest.CaptureFixture[str]):
        code = main(["--timeout", "0.2"] + python("import time; time.sleep(5)"))

        assert code == EXIT_TIMEOUT
        assert "timed out" in capfd.readouterr().err

    @pytest.mark.timeout(10)
    def test_timeout_from_environment(self):
        with mock.patch.dict(os.environ, {"DEPUTY_TIMEOUT": "0.2"}):
            reload_config()
            assert main(python("import time; time.sleep(5)")) == EXIT_TIMEOUT

    def test_missing_command(self):
        assert main(["--", "nonexistent_command_xyz_123"]) == EXIT_NOT_FOUND

    def test_no_command(self, capfd: pytest.CaptureFixture[str]):
        assert main([]) == EXIT_USAGE
        assert "missing command" in capfd.readouterr().err

    def test_log_stdout(self, capfd: pytest.CaptureFixture[str]):
        code = main(["--log-stdout"] + python("print('logged line')"))

        assert code == 0
        assert "logged line" in capfd.readouterr().out


class TestForceExit:
    """双击信号强制退出测试。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_double_signal_exits_immediately(self):
        managers: list[SignalManager] = []

        def make_manager(**kwargs):
            manager = SignalManager(**kwargs)
            managers.append(manager)
            return manager

        spec = ProcessSpec(argv=[sys.executable, "-c", ""])
        with mock.patch("proc_deputy.app.SignalManager", side_effect=make_manager), \
                mock.patch("proc_deputy.app.os._exit") as exit_mock:
            assert await run_command(Config(), spec) == 0

            manager = managers[0]
            manager._handle_signal(signal.SIGTERM)
            exit_mock.assert_not_called()
            manager._handle_signal(signal.SIGTERM)

        exit_mock.assert_called_once_with(128 + int(signal.SIGTERM))
