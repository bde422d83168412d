"""Tests for structured logging setup."""

import json
import logging

from moltmark.logs import log_context, request_id_var, setup_structured_logging


def test_handler_added_once():
    logger = setup_structured_logging("WARNING")
    before = len(logger.handlers)
    setup_structured_logging("DEBUG")
    assert len(logger.handlers) == before
    assert logger.level == logging.DEBUG
    setup_structured_logging("WARNING")


def test_record_is_json_with_request_id():
    logger = setup_structured_logging("WARNING")
    handler = logger.handlers[-1]
    record = logging.LogRecord("moltmark.service", logging.INFO, __file__, 1,
                               "Test result recorded", None, None)
    record.agent_id = "a1"
    token = request_id_var.set("req-42")
    try:
        handler.filter(record)
    finally:
        request_id_var.reset(token)

    line = json.loads(handler.format(record))
    assert line["message"] == "Test result recorded"
    assert line["level"] == "INFO"
    assert line["service"] == "moltmark"
    assert line["request_id"] == "req-42"
    assert line["agent_id"] == "a1"


def _render(message, **extra):
    handler = setup_structured_logging("WARNING").handlers[-1]
    record = logging.LogRecord("moltmark.service", logging.INFO, __file__, 1,
                               message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    handler.filter(record)
    return json.loads(handler.format(record))


def test_bound_operation_and_agent():
    with log_context("report_test_result", "agent-7"):
        line = _render("Test result recorded")
    assert line["operation"] == "report_test_result"
    assert line["agent_id"] == "agent-7"


def test_context_cleared_after_block():
    with log_context("verify_agent", "agent-7"):
        pass
    line = _render("outside")
    assert "agent_id" not in line
    assert "operation" not in line


def test_operation_without_agent():
    with log_context("list_certified_agents"):
        line = _render("listing")
    assert line["operation"] == "list_certified_agents"
    assert "agent_id" not in line


def test_explicit_extra_wins():
    with log_context("report_test_result", "agent-7"):
        line = _render("transition", agent_id="other")
    assert line["agent_id"] == "other"
