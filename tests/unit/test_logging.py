"""
Unit Tests for the Logging Module

Run with:
    pytest tests/unit/test_logging.py -v
"""

import logging

from core.logging import get_logger, log_api_request, log_api_response, logger, set_log_level


class TestLoggers:

    def test_child_logger_name(self):
        assert get_logger("core.orchestrator").name == "positionhub.core.orchestrator"

    def test_set_log_level(self):
        original = logger.level
        root_original = logging.getLogger().level
        try:
            set_log_level("debug")
            assert logger.level == logging.DEBUG
            set_log_level("nonsense")
            assert logger.level == logging.INFO
        finally:
            logger.setLevel(original)
            logging.getLogger().setLevel(root_original)


class TestApiLogHelpers:

    def test_request_and_response_logged_at_debug(self, caplog):
        original = logger.level
        logger.setLevel(logging.DEBUG)
        try:
            with caplog.at_level(logging.DEBUG, logger="positionhub"):
                log_api_request("binance", "/fapi/v2/account", {"recvWindow": 5000})
                log_api_response("binance", "/fapi/v2/account", 200, 0.25)
        finally:
            logger.setLevel(original)

        messages = [record.getMessage() for record in caplog.records]
        assert "API Request: binance /fapi/v2/account | Params: {'recvWindow': 5000}" in messages
        assert "API Response: binance /fapi/v2/account | Status: 200 | Time: 0.250s" in messages
