import json
import random
import string

from pytainers.errors import ParseError
from pytainers.MANAGERS.log_cursor import normalize_timestamp, split_line
from pytainers.PARSERS.compose_parser import ComposeParser
from pytainers.PARSERS.engine_output import parse_inspect, parse_json_documents, parse_version


def random_string(length):
    return ''.join(random.choice(string.printable) for _ in range(length))


def test_fuzz_compose_parser():
    parser = ComposeParser()
    for _ in range(100):
        content = random_string(random.randint(0, 1000))
        try:
            parser.parse_from_string(content)
        except (ValueError, TypeError, AttributeError):
            # Random junk may fail, but only with the errors callers handle
            pass


def test_fuzz_engine_output():
    for _ in range(200):
        content = random_string(random.randint(0, 300))
        try:
            parse_json_documents(content)
        except ParseError:
            pass
        try:
            parse_inspect(content)
        except ParseError:
            pass


def test_fuzz_inspect_documents():
    keys = ["Id", "ID", "Name", "State", "NetworkSettings", "Ports", "Status", "Health"]
    values = [None, "", "running", 0, 1, [], {}, "exited", {"Status": "healthy"}]
    for _ in range(200):
        document = {random.choice(keys): random.choice(values) for _ in range(random.randint(0, 6))}
        try:
            parse_inspect(json.dumps([document]))
        except ParseError:
            pass


def test_fuzz_versions_and_log_lines():
    for _ in range(200):
        text = random_string(random.randint(0, 40))
        version = parse_version(text)
        assert version is None or len(version) == 3
        normalize_timestamp(text)
        stamp, message = split_line(text)
        assert stamp is None or text.startswith(stamp)
