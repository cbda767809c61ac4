import re

from pytainers.MANAGERS.log_cursor import LogCursor, LogMatchCounter, normalize_timestamp, split_line
from pytainers.MODELS.container_state import ContainerIdentity, LogChunk

IDENTITY = ContainerIdentity(id="abc123", name="tc-app-1")


def test_normalize_timestamp_pads_fraction():
    assert normalize_timestamp("2024-03-01T10:00:00.5Z") == "2024-03-01T10:00:00.500000000Z"
    assert normalize_timestamp("2024-03-01T10:00:00Z") == "2024-03-01T10:00:00.000000000Z"
    assert normalize_timestamp("hello") is None


def test_split_line():
    assert split_line("2024-03-01T10:00:00.5Z listening on 80") == ("2024-03-01T10:00:00.5Z", "listening on 80")
    assert split_line("no timestamp here") == (None, "no timestamp here")


def test_cursor_never_rescans(engine):
    engine.log_chunks = [
        LogChunk(stdout="2024-03-01T10:00:00.1Z a\n2024-03-01T10:00:00.2Z b\n"),
        LogChunk(stdout="2024-03-01T10:00:00.2Z b\n2024-03-01T10:00:00.3Z c\n"),
        LogChunk(stdout="2024-03-01T10:00:00.3Z c\n"),
    ]
    cursor = LogCursor(engine, IDENTITY)

    assert cursor.read() == [("stdout", "a"), ("stdout", "b")]
    assert cursor.read() == [("stdout", "c")]
    assert cursor.read() == []
    assert cursor.since == "2024-03-01T10:00:00.3Z"


def test_boundary_keeps_new_lines_with_the_same_timestamp(engine):
    engine.log_chunks = [
        LogChunk(stdout="2024-03-01T10:00:00.1Z first\n"),
        LogChunk(stdout="2024-03-01T10:00:00.1Z first\n2024-03-01T10:00:00.1Z second\n"),
    ]
    cursor = LogCursor(engine, IDENTITY)
    cursor.read()
    assert cursor.read() == [("stdout", "second")]


def test_counter_filters_streams(engine):
    engine.log_chunks = [
        LogChunk(stdout="2024-03-01T10:00:00.1Z ready\n", stderr="2024-03-01T10:00:00.2Z ready\n"),
    ]
    counter = LogMatchCounter(LogCursor(engine, IDENTITY), re.compile("ready"), stream="stderr")
    assert counter.poll() == 1
    assert counter.poll() == 1


def test_carriage_return_stays_inside_its_line(engine):
    chunk = LogChunk(stdout="2024-03-01T10:00:00.1Z progress\rready\n")
    engine.log_chunks = [chunk, chunk, chunk]
    counter = LogMatchCounter(LogCursor(engine, IDENTITY), re.compile("ready"))

    assert [counter.poll() for _ in range(3)] == [1, 1, 1]


def test_continuation_text_is_read_once(engine):
    first = LogChunk(stdout="2024-03-01T10:00:00.1Z start\x0cready\nplain continuation\n")
    engine.log_chunks = [first, first]
    cursor = LogCursor(engine, IDENTITY)

    assert cursor.read() == [("stdout", "start\x0cready"), ("stdout", "plain continuation")]
    assert cursor.read() == []


def test_unstamped_output_is_not_rescanned(engine):
    engine.log_chunks = [
        LogChunk(stdout="booting\n"),
        LogChunk(stdout="booting\nready\n"),
    ]
    cursor = LogCursor(engine, IDENTITY)

    assert cursor.read() == [("stdout", "booting")]
    assert cursor.read() == [("stdout", "ready")]
