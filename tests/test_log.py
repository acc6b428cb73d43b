import io
import json
import logging

from permit_leads.log import configure_logging


def test_json_lines_keep_extra_fields():
    stream = io.StringIO()
    configure_logging("debug", json_lines=True, stream=stream)
    logging.getLogger("pl.test").info("ingest finished", extra={"source": "ladbs_issued", "records_new": 3})

    line = json.loads(stream.getvalue().strip())
    assert line["level"] == "info"
    assert line["logger"] == "pl.test"
    assert line["msg"] == "ingest finished"
    assert line["source"] == "ladbs_issued"
    assert line["records_new"] == 3


def test_reconfigure_replaces_handler():
    first, second = io.StringIO(), io.StringIO()
    configure_logging("info", stream=first)
    logger = configure_logging("warning", stream=second)
    assert len(logger.handlers) == 1

    logging.getLogger("pl.test").info("hidden")
    logging.getLogger("pl.test").warning("shown")
    assert first.getvalue() == ""
    assert "shown" in second.getvalue()
    assert "hidden" not in second.getvalue()
