import re
import threading

from pytainers.UTILS.identity import CROCKFORD, IdentityAllocator, UlidGenerator, encode_ulid, sanitize


def test_encode_ulid_is_26_crockford_chars():
    value = encode_ulid(1_700_000_000_000, 12345)
    assert len(value) == 26
    assert set(value) <= set(CROCKFORD)


def test_ids_are_monotonic_within_one_millisecond():
    generator = UlidGenerator(clock=lambda: 1_700_000_000_000)
    ids = [generator.new() for _ in range(100)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 100


def test_ids_follow_the_clock():
    ticks = iter([1000, 2000])
    generator = UlidGenerator(clock=lambda: next(ticks))
    first, second = generator.new(), generator.new()
    assert first < second
    assert first[:10] != second[:10]


def test_clock_going_backwards_keeps_order():
    ticks = iter([5000, 4000])
    generator = UlidGenerator(clock=lambda: next(ticks))
    assert generator.new() < generator.new()


def test_names_are_unique_across_threads():
    allocator = IdentityAllocator("tc")
    names = []
    lock = threading.Lock()

    def worker():
        for _ in range(200):
            name = allocator.container_name("postgres")
            with lock:
                names.append(name)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(names)) == len(names) == 1600


def test_name_shapes():
    allocator = IdentityAllocator("tc")
    assert re.match(r"^tc-my-db-[0-9a-z]{26}$", allocator.container_name("My DB"))
    assert re.match(r"^tc_kafka_[0-9a-z]{26}$", allocator.project_name("kafka"))
    assert sanitize("///") == "container"


def test_project_name_from_dotted_prefix():
    allocator = IdentityAllocator("ci.run")
    name = allocator.project_name("web.app")
    assert re.match(r"^ci-run_web-app_[0-9a-z]{26}$", name)
    assert re.match(r"^[a-z0-9][a-z0-9_-]*$", name)
    assert allocator.container_name("web").startswith("ci.run-web-")
