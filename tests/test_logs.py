import asyncio
import itertools
import logging
import threading
from datetime import datetime, timedelta

import pytest

from egdata_client.constants import Event
from egdata_client.sync.logs import LogStream, LogStreamHandler, add_stream_handler, format_entry

T0 = datetime(2025, 6, 1, 10, 0, 0)


@pytest.fixture
def stream(backend, context):
    return LogStream(context, backend.gateway, max_entries=5)


class TestOrdering:
    @pytest.mark.parametrize("order", list(itertools.permutations([1, 2, 3])))
    def test_newest_first_regardless_of_insert_order(self, context, order):
        stream = LogStream(context)
        for seconds in order:
            stream.append("INFO", f"t{seconds}", timestamp=T0 + timedelta(seconds=seconds))
        assert [e.message for e in stream.query().value] == ["t3", "t2", "t1"]

    def test_same_timestamp_falls_back_to_sequence(self, context):
        stream = LogStream(context)
        stream.append("INFO", "first", timestamp=T0)
        stream.append("INFO", "second", timestamp=T0)
        assert [e.message for e in stream.query().value] == ["second", "first"]


class TestAppend:
    def test_keys_unique_within_same_millisecond(self, context):
        stream = LogStream(context)
        entries = [stream.append("INFO", str(i), timestamp=T0) for i in range(50)]
        assert len({e.id for e in entries}) == 50
        assert len(context.logs) == 50

    def test_level_normalized(self, context):
        stream = LogStream(context)
        assert stream.append("warning", "x").level == "WARNING"
        assert stream.append("success", "x").level == "SUCCESS"
        assert stream.append("chatty", "x").level == "INFO"

    def test_level_aliases(self, context):
        stream = LogStream(context)
        assert stream.append("warn", "x").level == "WARNING"
        assert stream.append("WARN", "x").level == "WARNING"
        assert stream.append("fatal", "x").level == "CRITICAL"

    def test_formatted_line(self, context):
        stream = LogStream(context)
        entry = stream.append("ERROR", "boom", timestamp=T0)
        assert entry.formatted == "[10:00:00] ERROR: boom"
        assert format_entry("INFO", "hi", T0, source_timestamp="2025-06-01 09:59:59") == \
            "[2025-06-01 09:59:59] INFO: hi"

    def test_cap_drops_oldest(self, stream, context):
        for i in range(8):
            stream.append("INFO", f"m{i}", timestamp=T0 + timedelta(seconds=i))
        assert len(context.logs) == 5
        assert [e.message for e in stream.query().value] == ["m7", "m6", "m5", "m4", "m3"]


class TestClear:
    def test_clear_removes_everything(self, stream, context):
        for i in range(3):
            stream.append("INFO", str(i))
        assert stream.clear() == 3
        assert stream.query().value == []

    def test_append_from_subscriber_during_clear(self, context):
        stream = LogStream(context)
        stream.append("INFO", "a")
        stream.append("INFO", "b")
        appended = []

        def on_change(changes):
            if not appended and changes[0].kind == "delete":
                appended.append(stream.append("INFO", "cleared"))

        context.logs.subscribe(on_change)
        stream.clear()

        assert [e.message for e in context.logs.values()] == ["cleared"]


class TestPushEvents:
    def test_log_event(self, backend, stream, context):
        stream.attach()
        backend.gateway.emit(Event.LOG_EVENT, {"level": "info", "message": "Scanning", "timestamp": "12:00:01"})
        entry = context.logs.values()[0]
        assert entry.level == "INFO"
        assert entry.formatted == "[12:00:01] INFO: Scanning"

    def test_log_batch(self, backend, stream, context):
        stream.attach()
        backend.gateway.emit(Event.LOG_BATCH, [
            {"level": "INFO", "message": "one"},
            {"level": "ERROR", "message": "two"},
        ])
        assert sorted(e.message for e in context.logs.values()) == ["one", "two"]

    def test_interleaved_with_local(self, backend, stream, context):
        stream.attach()
        stream.append("INFO", "local")
        backend.gateway.emit(Event.LOG_EVENT, {"level": "INFO", "message": "remote"})
        stream.append("INFO", "local2")
        assert len({e.id for e in context.logs.values()}) == 3

    def test_detach(self, backend, stream, context):
        stream.attach()
        stream.detach()
        assert backend.gateway.emit(Event.LOG_EVENT, {"level": "INFO", "message": "x"}) == 0
        assert len(context.logs) == 0


class TestLogStreamHandler:
    @pytest.fixture
    def test_logger(self):
        log = logging.getLogger("egdata_client.tests.stream")
        log.setLevel(logging.DEBUG)
        log.propagate = False
        yield log
        for handler in log.handlers[:]:
            log.removeHandler(handler)

    def test_records_are_mirrored(self, context, test_logger):
        stream = LogStream(context)
        add_stream_handler(test_logger, stream)
        test_logger.info("Found %d games", 3)
        test_logger.debug("below handler level")
        entries = stream.query().value
        assert [e.message for e in entries] == ["Found 3 games"]
        assert entries[0].level == "INFO"

    def test_replacing_handler_does_not_duplicate(self, context, test_logger):
        stream = LogStream(context)
        add_stream_handler(test_logger, stream)
        add_stream_handler(test_logger, stream)
        test_logger.warning("once")
        assert len(context.logs) == 1

    def test_logging_from_subscriber_is_not_fed_back(self, context, test_logger):
        stream = LogStream(context)
        add_stream_handler(test_logger, stream)
        context.logs.subscribe(lambda changes: test_logger.info("store changed"))
        test_logger.info("hello")
        assert [e.message for e in context.logs.values()] == ["hello"]

    @pytest.mark.asyncio
    async def test_other_thread_is_marshalled_to_loop(self, context, test_logger):
        stream = LogStream(context)
        test_logger.addHandler(LogStreamHandler(stream, asyncio.get_running_loop()))

        worker = threading.Thread(target=test_logger.error, args=("from worker",))
        worker.start()
        worker.join()
        assert len(context.logs) == 0

        await asyncio.sleep(0)
        assert [e.message for e in context.logs.values()] == ["from worker"]
