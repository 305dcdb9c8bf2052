"""Tests for the batch buffer."""

import threading

from bananas.buffer import BatchBuffer
from bananas.records import EventKind, build_record


def make(n):
    return build_record(EventKind.SERVER, data={"n": n})


class TestBatchBuffer:
    def test_drain_empty(self):
        buffer = BatchBuffer()
        assert buffer.drain_all() == []

    def test_push_order(self):
        buffer = BatchBuffer()
        records = [make(i) for i in range(5)]
        for record in records:
            buffer.push(record)

        assert len(buffer) == 5
        assert buffer.drain_all() == records

    def test_drain_resets(self):
        buffer = BatchBuffer()
        buffer.push(make(1))

        assert len(buffer.drain_all()) == 1
        assert len(buffer) == 0
        assert buffer.drain_all() == []

    def test_push_after_drain_goes_to_next_batch(self):
        buffer = BatchBuffer()
        buffer.push(make(1))
        first = buffer.drain_all()
        buffer.push(make(2))
        second = buffer.drain_all()

        assert [r.data["n"] for r in first] == [1]
        assert [r.data["n"] for r in second] == [2]

    def test_stats(self):
        buffer = BatchBuffer()
        buffer.push(make(1))
        buffer.push(make(2))
        buffer.drain_all()
        buffer.push(make(3))

        assert buffer.stats == {"pushed": 3, "drained": 2, "pending": 1}

    def test_concurrent_push_and_drain(self):
        buffer = BatchBuffer()
        producers = 4
        per_producer = 500
        batches = []
        done = threading.Event()

        def produce(p):
            for i in range(per_producer):
                buffer.push(build_record(EventKind.SERVER, data=(p, i)))

        def drain():
            while not done.is_set():
                batches.append(buffer.drain_all())
            batches.append(buffer.drain_all())

        drainer = threading.Thread(target=drain)
        drainer.start()
        threads = [threading.Thread(target=produce, args=(p,)) for p in range(producers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        done.set()
        drainer.join()

        delivered = [record.data for batch in batches for record in batch]

        # Every record exactly once
        assert len(delivered) == producers * per_producer
        assert len(set(delivered)) == producers * per_producer

        # Each producer's records keep their push order
        for p in range(producers):
            mine = [i for (q, i) in delivered if q == p]
            assert mine == list(range(per_producer))
