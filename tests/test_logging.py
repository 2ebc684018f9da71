import json
import logging

from mentor_match.logging_config import JsonFormatter


def test_json_formatter_emits_one_object():
    record = logging.LogRecord("mentor_match.store", logging.WARNING, __file__, 1, "Ended %s", ("m-1",), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "mentor_match.store"
    assert payload["message"] == "Ended m-1"
    assert "exc_info" not in payload
