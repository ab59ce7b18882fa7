import json
import logging

from backend.app.core.logging import CrawlerJsonFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord("backend.app.services.sweep", logging.INFO, __file__, 1, "sweep page=%d", (3,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_carries_job_and_run_id():
    formatter = CrawlerJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    payload = json.loads(formatter.format(_record(job="sweep", run_id=42)))

    assert payload["message"] == "sweep page=3"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "backend.app.services.sweep"
    assert payload["job"] == "sweep"
    assert payload["run_id"] == 42
    assert "timestamp" in payload


def test_setup_logging_installs_single_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging(level="debug", fmt="json")
        setup_logging(level="debug", fmt="json")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CrawlerJsonFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
