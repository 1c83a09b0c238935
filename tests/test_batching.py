"""
Tests for batch composition and batch size growth.
"""

import pytest

from panaani.assignments import ClusterAssignment
from panaani.batching import (
    BatchScheduler,
    avoid_singleton_remainder,
    batch_size_schedule,
    chunk_labels,
    group_representatives,
    grow_batch_size,
)
from panaani.dendrogram import LinkageParams
from panaani.distances import (
    GUIDE_SKANI_PARAMS,
    PairwiseSimilarity,
    SimilarityEstimator,
    SketchingError,
    SkaniParams,
)


class FamilyEstimator(SimilarityEstimator):
    """Files sharing the first character are near-identical, everything else is unrelated."""

    def __init__(self, unreadable=()):
        self.unreadable = set(unreadable)
        self.calls = []

    def estimate(self, files, params):
        self.calls.append((list(files), params))
        readable = [f for f in files if f not in self.unreadable]
        results = []
        for i, a in enumerate(readable):
            for b in readable[i + 1:]:
                similarity = 0.995 if a[0] == b[0] else None
                results.append(PairwiseSimilarity(a, b, similarity))
        return results


class TestChunkLabels:
    """Test suite for chunk_labels."""

    def test_even_split(self):
        assert chunk_labels(["a", "b", "c", "d"], 2) == [["a", "b"], ["c", "d"]]

    def test_shorter_last_chunk(self):
        assert chunk_labels(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]

    def test_batch_larger_than_input(self):
        assert chunk_labels(["a", "b"], 10) == [["a", "b"]]

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            chunk_labels(["a"], 0)


class TestBatchGrowth:
    """Test suite for batch size growth."""

    def test_linear(self):
        assert grow_batch_size(50, 50, "linear") == 100
        assert grow_batch_size(100, 50, "linear") == 150

    def test_double(self):
        assert grow_batch_size(50, 50, "double") == 100
        assert grow_batch_size(100, 50, "double") == 200

    def test_unknown_strategy_falls_back_to_linear(self):
        assert grow_batch_size(100, 50, "exponential") == 150

    def test_double_schedule(self):
        assert batch_size_schedule(1000, 50, "double") == [50, 100, 200, 400, 800]

    def test_linear_schedule(self):
        assert batch_size_schedule(260, 50, "linear") == [50, 100, 150, 200, 250]

    def test_schedule_when_everything_fits(self):
        assert batch_size_schedule(40, 50, "double") == []

    def test_avoid_singleton_remainder(self):
        # 101 clusters in batches of 50 would leave a lone cluster in the last batch
        assert avoid_singleton_remainder(101, 50) == 51
        assert avoid_singleton_remainder(100, 50) == 50

    def test_avoid_singleton_remainder_terminates(self):
        assert avoid_singleton_remainder(1, 2) == 2
        assert avoid_singleton_remainder(5, 4) == 5


class TestGroupRepresentatives:
    """Test suite for group_representatives."""

    def test_groups_families(self):
        estimator = FamilyEstimator()
        groups = group_representatives(["a1", "b1", "a2", "b2"], estimator,
                                       SkaniParams(), LinkageParams())

        assert groups["a1"] == groups["a2"]
        assert groups["b1"] == groups["b2"]
        assert groups["a1"] != groups["b1"]

    def test_single_file_skips_estimator(self):
        estimator = FamilyEstimator()
        assert group_representatives(["a1"], estimator, SkaniParams(), LinkageParams()) == {"a1": 0}
        assert estimator.calls == []

    def test_unreadable_file_is_fatal(self):
        estimator = FamilyEstimator(unreadable={"b1"})
        with pytest.raises(SketchingError, match="b1"):
            group_representatives(["a1", "a2", "b1"], estimator, SkaniParams(), LinkageParams())


class TestBatchScheduler:
    """Test suite for BatchScheduler."""

    def setup_method(self):
        self.assignment = ClusterAssignment.from_sequences(["a1", "b1", "a2", "b2", "a3"])

    def test_default_order(self):
        scheduler = BatchScheduler(FamilyEstimator())
        assert scheduler.order_labels(self.assignment, 0) == ["a1", "b1", "a2", "b2", "a3"]

    def test_initial_batches_used_in_first_round_only(self):
        scheduler = BatchScheduler(FamilyEstimator())
        initial = ["b2", "b1", "a3", "a2", "a1"]

        assert scheduler.order_labels(self.assignment, 0, initial_batches=initial) == initial
        assert scheduler.order_labels(self.assignment, 1, initial_batches=initial) == self.assignment.labels()

    def test_initial_batches_must_cover_clusters(self):
        scheduler = BatchScheduler(FamilyEstimator())
        with pytest.raises(ValueError, match="cover"):
            scheduler.order_labels(self.assignment, 0, initial_batches=["a1", "b1"])
        with pytest.raises(ValueError, match="unknown"):
            scheduler.order_labels(self.assignment, 0, initial_batches=["a1", "b1", "a2", "b2", "zz"])

    def test_guided_order_groups_similar_clusters(self):
        estimator = FamilyEstimator()
        scheduler = BatchScheduler(estimator)
        ordering = scheduler.order_labels(self.assignment, 1, guided=True)

        assert sorted(ordering) == sorted(self.assignment.labels())
        families = [label[0] for label in ordering]
        # Each family forms one contiguous run
        assert families in (["a", "a", "a", "b", "b"], ["b", "b", "a", "a", "a"])
        # Within a coarse group labels are sorted
        assert [label for label in ordering if label[0] == "a"] == ["a1", "a2", "a3"]
        # The guide pass uses the low resolution settings
        assert estimator.calls[0][1] == GUIDE_SKANI_PARAMS
