import io
import logging

from rich.console import Console

from imagetaster.services.session_log import SessionLog


def _console(buffer):
    return Console(file=buffer, force_terminal=False, width=200)


def test_session_log_creates_namespaced_directory(tmp_path):
    session_log = SessionLog(str(tmp_path / "logs"), "20260101000000-abcd1234", console=_console(io.StringIO()))

    assert (tmp_path / "logs" / "20260101000000-abcd1234").is_dir()
    assert session_log.directory.endswith("20260101000000-abcd1234")


def test_instance_log_writes_structured_entries(tmp_path):
    session_log = SessionLog(str(tmp_path), "session-a", console=_console(io.StringIO()))
    log = session_log.instance_log("taster-20260101_000000-ubuntu")

    log.log("warn", "disk almost full", context="SSH")
    log.close()

    content = (tmp_path / "session-a" / "taster-20260101_000000-ubuntu.log").read_text(encoding="utf-8")
    assert "[WARNING] SSH: disk almost full" in content


def test_instance_log_duplicates_to_console_when_asked(tmp_path):
    buffer = io.StringIO()
    log = SessionLog(str(tmp_path), "session-b", console=_console(buffer)).instance_log("instance")

    log.info("Building...", dup_stdout=True)
    log.info("quiet entry")
    log.close()

    assert "Building..." in buffer.getvalue()
    assert "quiet entry" not in buffer.getvalue()


def test_unknown_severity_is_coerced_to_info(tmp_path):
    buffer = io.StringIO()
    log = SessionLog(str(tmp_path), "session-c", console=_console(buffer)).instance_log("instance")

    log.log("loud", "volume attached", context="Volumes")
    log.close()

    content = (tmp_path / "session-c" / "instance.log").read_text(encoding="utf-8")
    assert "[ERROR] imagetaster: loud is not a logging severity name. Defaulting to INFO." in content
    assert "[INFO] Volumes (severity=loud): volume attached" in content
    assert "loud is not a severity" in buffer.getvalue()


def test_closing_instance_log_releases_its_logger(tmp_path):
    session_log = SessionLog(str(tmp_path), "session-b", console=_console(io.StringIO()))
    log = session_log.instance_log("taster-20260101_000000-debian")
    name = log.logger.name

    assert name in logging.Logger.manager.loggerDict
    log.close()

    assert name not in logging.Logger.manager.loggerDict
    assert log.logger.handlers == []
