"""Tests for the adaptive batch queue."""

import pytest

from leadsync.app.bulk import AdaptiveBatchQueue


class TestAdaptiveBatchQueue:
    """Test batch sizing and requeue ordering."""

    def test_initial_size_clamped(self):
        assert AdaptiveBatchQueue([], initial_batch_size=500, max_batch_size=100).current_batch_size == 100
        assert AdaptiveBatchQueue([], initial_batch_size=1, min_batch_size=5).current_batch_size == 5

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            AdaptiveBatchQueue([], min_batch_size=0)
        with pytest.raises(ValueError):
            AdaptiveBatchQueue([], min_batch_size=20, max_batch_size=10)

    def test_batches_in_fifo_order(self):
        queue = AdaptiveBatchQueue(range(25), initial_batch_size=10, min_batch_size=1, max_batch_size=10)

        first = queue.next_batch()
        second = queue.next_batch()
        third = queue.next_batch()

        assert first.items == list(range(10))
        assert first.batch_number == 1
        assert first.remaining == 15
        assert second.items == list(range(10, 20))
        assert len(third) == 5
        assert third.remaining == 0
        assert queue.next_batch() is None
        assert queue.has_more() is False

    def test_next_batch_numbering_counts_reports(self):
        queue = AdaptiveBatchQueue(range(20), initial_batch_size=5, min_batch_size=1, max_batch_size=10)

        queue.next_batch()
        queue.report_success(5)
        assert queue.next_batch().batch_number == 2

    def test_grows_every_third_success(self):
        queue = AdaptiveBatchQueue([], initial_batch_size=10, min_batch_size=1, max_batch_size=100)

        queue.report_success(10)
        queue.report_success(10)
        assert queue.current_batch_size == 10

        queue.report_success(10)
        assert queue.current_batch_size == 12

        for _ in range(3):
            queue.report_success(12)
        # ceil(12 * 1.2) = 15
        assert queue.current_batch_size == 15
        assert queue.total_processed == 66

    def test_growth_capped_at_max(self):
        queue = AdaptiveBatchQueue([], initial_batch_size=10, min_batch_size=1, max_batch_size=11)

        for _ in range(6):
            queue.report_success(1)

        assert queue.current_batch_size == 11

    def test_failure_shrinks_and_requeues_at_front(self):
        queue = AdaptiveBatchQueue(range(30), initial_batch_size=10, min_batch_size=1, max_batch_size=10)

        batch = queue.next_batch()
        queue.report_failure(batch.items)

        assert queue.current_batch_size == 7
        assert queue.failed_batches == 1
        assert len(queue) == 30

        retried = queue.next_batch()
        assert retried.items == list(range(7))
        assert queue.next_batch().items == [7, 8, 9, 10, 11, 12, 13]

    def test_shrink_floored_at_min(self):
        queue = AdaptiveBatchQueue([], initial_batch_size=6, min_batch_size=5, max_batch_size=10)

        queue.report_failure()
        queue.report_failure()

        assert queue.current_batch_size == 5

    def test_size_stays_in_bounds(self):
        queue = AdaptiveBatchQueue([], initial_batch_size=8, min_batch_size=3, max_batch_size=20)

        for i in range(200):
            if i % 5 == 4:
                queue.report_failure()
            else:
                queue.report_success(1)
            assert 3 <= queue.current_batch_size <= 20

    def test_requeue_does_not_count_failure(self):
        queue = AdaptiveBatchQueue(["a", "b", "c"], initial_batch_size=2, min_batch_size=1, max_batch_size=2)

        batch = queue.next_batch()
        queue.requeue(batch.items)

        assert queue.failed_batches == 0
        assert queue.current_batch_size == 2
        assert queue.next_batch().items == ["a", "b"]

    def test_status(self):
        queue = AdaptiveBatchQueue(range(12), initial_batch_size=5, min_batch_size=1, max_batch_size=10)
        queue.next_batch()
        queue.report_success(5)

        status = queue.status().to_dict()

        assert status == {
            "remaining_items": 7,
            "current_batch_size": 5,
            "successful_batches": 1,
            "failed_batches": 0,
            "total_processed": 5,
        }
