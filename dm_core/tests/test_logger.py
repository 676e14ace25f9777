import json
import logging

from dm_core.infrastructure.logging.logger import JsonFormatter, get_logger


def _record(msg, **extra):
    record = logging.LogRecord("dm_core.test", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_merges_extra_payload():
    line = JsonFormatter().format(_record("Starting request", extra={"method": "process_action", "attempt": 1}))
    data = json.loads(line)
    assert data["level"] == "INFO"
    assert data["name"] == "dm_core.test"
    assert data["msg"] == "Starting request"
    assert data["method"] == "process_action"
    assert data["ts"].endswith("Z")


def test_json_formatter_redacts_long_messages():
    data = json.loads(JsonFormatter(redact_content=True).format(_record("x" * 200)))
    assert len(data["msg"]) == 64


def test_get_logger_is_child_of_package_logger():
    log = get_logger("pipeline")
    assert log.name == "dm_core.pipeline"
    assert log.parent.name == "dm_core"


def test_component_loggers_share_package_handlers():
    from dm_core.conversation import manager
    from dm_core.resilience import pipeline

    assert pipeline.logger.name == "dm_core.pipeline"
    assert manager.persistence_logger.name == "dm_core.persistence"
    assert pipeline.logger.parent is logging.getLogger("dm_core")
