import logging

import pytest

from idcapture.logging_config import AUDITED_LOGGERS, RUNTIME_LOG, SUBMISSION_LOG, configure_logging


@pytest.fixture
def restore_logging():
    names = ("", "httpx", *AUDITED_LOGGERS)
    saved = {name: (logging.getLogger(name).handlers[:], logging.getLogger(name).level) for name in names}
    yield
    for name, (handlers, level) in saved.items():
        log = logging.getLogger(name)
        for handler in log.handlers:
            if handler not in handlers:
                handler.close()
        log.handlers[:] = handlers
        log.setLevel(level)


def _flush():
    for name in ("", *AUDITED_LOGGERS):
        for handler in logging.getLogger(name).handlers:
            handler.flush()


def test_submission_activity_goes_to_audit_file(tmp_path, restore_logging):
    log_dir = configure_logging("INFO", tmp_path / "logs")

    logging.getLogger("idcapture.submission").info("submission a1: finalized")
    logging.getLogger("idcapture.backend.http_client").warning("put u1/a1/doc.jpg: HTTP 503")
    logging.getLogger("idcapture.session_manager").info("capture[u1]: entered")
    _flush()

    audit = (log_dir / SUBMISSION_LOG).read_text(encoding="utf-8")
    runtime = (log_dir / RUNTIME_LOG).read_text(encoding="utf-8")
    assert "submission a1: finalized" in audit
    assert "HTTP 503" in audit
    assert "capture[u1]" not in audit
    assert "submission a1: finalized" in runtime
    assert "capture[u1]: entered" in runtime


def test_audit_file_keeps_info_when_console_is_quiet(tmp_path, restore_logging):
    log_dir = configure_logging("WARNING", tmp_path)

    logging.getLogger("idcapture.submission").info("submission a2: finalized")
    logging.getLogger("idcapture.session_manager").info("capture[u2]: entered")
    _flush()

    assert "submission a2: finalized" in (log_dir / SUBMISSION_LOG).read_text(encoding="utf-8")
    runtime = log_dir / RUNTIME_LOG
    assert not runtime.exists() or "submission a2" not in runtime.read_text(encoding="utf-8")
