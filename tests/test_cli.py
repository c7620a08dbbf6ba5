"""Tests for command-line interface"""

import json
import logging

import pytest

from filemutex.cli.main import main
from filemutex.cli.parser import parse_arguments
from filemutex.core.locks import LockInfo, LockState, LockStore


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging() swaps the root handlers; put pytest's back afterwards"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestParseArguments:
    """Argument parsing"""

    def test_name_only(self):
        args = parse_arguments(["instance-a"])
        assert args.name == "instance-a"
        assert args.workers == 2
        assert args.iterations == 10
        assert args.hold == 1.0
        assert args.lock_file is None
        assert args.poll_interval is None
        assert args.timeout is None
        assert args.backend is None
        assert args.init is False
        assert args.status is False
        assert args.force_release is False
        assert args.log_format == "text"

    def test_all_options(self, tmp_path):
        args = parse_arguments(
            [
                "b",
                "--lock-file", str(tmp_path / "l.txt"),
                "--poll-interval", "0.5",
                "--timeout", "0",
                "--backend", "lease",
                "--stale-threshold", "60",
                "--workers", "3",
                "--iterations", "4",
                "--hold", "0",
                "--init",
                "--log-level", "DEBUG",
                "--log-format", "json",
                "--quiet",
            ]
        )
        assert args.lock_file == tmp_path / "l.txt"
        assert args.poll_interval == 0.5
        assert args.timeout == 0.0
        assert args.backend == "lease"
        assert args.stale_threshold == 60.0
        assert args.workers == 3
        assert args.iterations == 4
        assert args.hold == 0.0
        assert args.init is True
        assert args.log_level == "DEBUG"
        assert args.log_format == "json"
        assert args.quiet is True

    def test_name_is_required(self):
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments([])
        assert exc_info.value.code == 2

    @pytest.mark.parametrize(
        "argv",
        [
            ["a", "--workers", "0"],
            ["a", "--poll-interval", "0"],
            ["a", "--timeout", "-1"],
            ["a", "--hold", "abc"],
            ["a", "--backend", "redis"],
            ["a", "--status", "--force-release"],
        ],
    )
    def test_invalid_values(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(argv)
        assert exc_info.value.code == 2


class TestMain:
    """End-to-end CLI runs"""

    def test_init_and_run(self, tmp_path, capsys):
        lock_file = tmp_path / "lock.txt"
        code = main(
            [
                "instance-a",
                "--lock-file", str(lock_file),
                "--init",
                "--workers", "2",
                "--iterations", "2",
                "--hold", "0.01",
                "--poll-interval", "0.01",
                "--quiet",
            ]
        )

        assert code == 0
        assert LockStore(lock_file).read() is LockState.AVAILABLE
        out = capsys.readouterr().out
        assert "4 critical sections completed without overlap" in out
        assert "instance-a start" in out

    def test_run_fails_on_timeout(self, tmp_path, capsys):
        lock_file = tmp_path / "lock.txt"
        LockStore(lock_file).initialize(LockState.HELD)

        code = main(
            [
                "instance-b",
                "--lock-file", str(lock_file),
                "--workers", "1",
                "--iterations", "1",
                "--poll-interval", "0.01",
                "--timeout", "0.05",
                "--quiet",
            ]
        )

        assert code == 1
        assert "1 critical sections failed" in capsys.readouterr().err

    def test_status(self, tmp_path, capsys):
        lock_file = tmp_path / "lock.txt"
        store = LockStore(lock_file)
        store.initialize(LockState.HELD)
        info = LockInfo.for_current_process(owner="holder-x", backend="fcntl")
        store.write_holder(info)

        code = main(["ops", "--lock-file", str(lock_file), "--status"])

        out = capsys.readouterr().out
        assert code == 0
        assert "State:" in out
        assert "Wait" in out
        assert "holder-x" in out
        assert info.lock_id in out

    def test_status_of_missing_lock(self, tmp_path, capsys):
        code = main(["ops", "--lock-file", str(tmp_path / "missing.txt"), "--status"])
        assert code == 1
        assert "Lock file not found" in capsys.readouterr().err

    def test_force_release(self, tmp_path, capsys):
        lock_file = tmp_path / "lock.txt"
        store = LockStore(lock_file)
        store.initialize(LockState.HELD)
        store.write_holder(LockInfo.for_current_process(owner="crashed-job", backend="fcntl"))

        code = main(["ops", "--lock-file", str(lock_file), "--force-release"])

        assert code == 0
        assert store.read() is LockState.AVAILABLE
        assert store.read_holder() is None
        assert "crashed-job" in capsys.readouterr().out

    def test_environment_configures_lock_file(self, tmp_path, monkeypatch, capsys):
        lock_file = tmp_path / "env-lock.txt"
        LockStore(lock_file).initialize()
        monkeypatch.setenv("FILEMUTEX_LOCK_FILE", str(lock_file))

        code = main(["env", "--status"])

        assert code == 0
        assert str(lock_file) in capsys.readouterr().out

    def test_invalid_environment_is_reported(self, monkeypatch, capsys):
        monkeypatch.setenv("FILEMUTEX_POLL_INTERVAL", "often")

        code = main(["env", "--status"])

        assert code == 1
        assert "Invalid number for poll_interval" in capsys.readouterr().err

    def test_json_log_format(self, tmp_path, capsys):
        lock_file = tmp_path / "lock.txt"
        code = main(
            [
                "json-run",
                "--lock-file", str(lock_file),
                "--init",
                "--workers", "1",
                "--iterations", "1",
                "--hold", "0",
                "--poll-interval", "0.01",
                "--log-format", "json",
                "--quiet",
            ]
        )

        assert code == 0
        entries = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        starts = [e for e in entries if e["message"].startswith("json-run start")]
        assert len(starts) == 1
        assert starts[0]["section_label"] == "json-run"
        assert starts[0]["driver_label"] == "json-run"

    def test_log_dir_writes_file(self, tmp_path):
        lock_file = tmp_path / "lock.txt"
        log_dir = tmp_path / "logs"
        code = main(
            [
                "file-run",
                "--lock-file", str(lock_file),
                "--init",
                "--workers", "1",
                "--iterations", "1",
                "--hold", "0",
                "--poll-interval", "0.01",
                "--log-dir", str(log_dir),
                "--quiet",
            ]
        )

        assert code == 0
        log_files = list(log_dir.glob("filemutex_file-run_*.log"))
        assert len(log_files) == 1
        assert "file-run start" in log_files[0].read_text(encoding="utf-8")
