"""Tests for core.utils.worker_id module."""

from core.utils.worker_id import generate_worker_id


class TestGenerateWorkerId:
    def test_no_prefix(self):
        worker_id = generate_worker_id()
        assert len(worker_id.split("-")) >= 3

    def test_with_prefix(self):
        worker_id = generate_worker_id("orders-consumer-0")
        assert worker_id.startswith("orders-consumer-0-")
        assert worker_id.removeprefix("orders-consumer-0-")

    def test_unique(self):
        ids = {generate_worker_id("dlq-handler") for _ in range(10)}
        assert len(ids) == 10

    def test_empty_prefix_treated_as_no_prefix(self):
        assert not generate_worker_id("").startswith("-")
