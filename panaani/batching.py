"""Batch composition and batch size growth for iterative dereplication."""

import logging
from typing import Dict, List, Optional

from .assignments import ClusterAssignment
from .dendrogram import LinkageParams, cluster_distances
from .distances import (
    GUIDE_SKANI_PARAMS,
    SimilarityEstimator,
    SketchingError,
    SkaniParams,
    ani_from_fastx_files,
    similarities_to_condensed,
)

logger = logging.getLogger(__name__)

BATCH_STEP_STRATEGIES = ("linear", "double")


def chunk_labels(labels: List[str], batch_size: int) -> List[List[str]]:
    """Split labels into consecutive batches of at most batch_size."""
    if batch_size < 1:
        raise ValueError(f"Batch size must be positive, got {batch_size}")
    return [labels[i:i + batch_size] for i in range(0, len(labels), batch_size)]


def grow_batch_size(batch_size: int, batch_step: int, strategy: str = "linear") -> int:
    """Next batch size under the given growth strategy.

    Unknown strategies grow linearly.

    Examples:
        >>> grow_batch_size(50, 50, "linear")
        100
        >>> grow_batch_size(100, 50, "double")
        200
    """
    if strategy == "double":
        return batch_size * 2
    if strategy != "linear":
        logger.debug(f"Unknown batch step strategy '{strategy}', growing linearly")
    return batch_size + batch_step


def avoid_singleton_remainder(n_remaining: int, batch_size: int) -> int:
    """Grow batch_size until the last batch would hold more than one cluster."""
    while batch_size < n_remaining and n_remaining % batch_size == 1:
        batch_size += 1
    return batch_size


def batch_size_schedule(n_remaining: int, batch_step: int, strategy: str = "linear") -> List[int]:
    """Batch sizes used while clusters do not fit in a single batch, ignoring merges.

    Examples:
        >>> batch_size_schedule(300, 50, "double")
        [50, 100, 200]
        >>> batch_size_schedule(160, 50, "linear")
        [50, 100, 150]
    """
    if batch_step < 1:
        raise ValueError(f"Batch step must be positive, got {batch_step}")
    sizes = []
    batch_size = batch_step
    while batch_size < n_remaining:
        sizes.append(batch_size)
        batch_size = grow_batch_size(batch_size, batch_step, strategy)
    return sizes


class BatchScheduler:
    """Decides which clusters are dereplicated together in a round."""

    def __init__(self, estimator: SimilarityEstimator,
                 linkage_params: Optional[LinkageParams] = None,
                 guide_params: Optional[SkaniParams] = None):
        self.estimator = estimator
        self.linkage_params = linkage_params or LinkageParams()
        self.guide_params = guide_params or GUIDE_SKANI_PARAMS

    def order_labels(self, assignment: ClusterAssignment, iteration: int,
                     initial_batches: Optional[List[str]] = None,
                     guided: bool = False) -> List[str]:
        """Order the current cluster labels for chunking.

        Args:
            assignment: Current cluster assignment
            iteration: Round number, starting from 0
            initial_batches: Fixed label order used in the first round
            guided: Group labels by a coarse ANI clustering

        Returns:
            All labels of the assignment, each exactly once
        """
        if iteration == 0 and initial_batches is not None:
            self._check_initial_batches(assignment, initial_batches)
            return list(initial_batches)
        if guided:
            return self.guided_order(assignment)
        return assignment.labels()

    @staticmethod
    def _check_initial_batches(assignment: ClusterAssignment, initial_batches: List[str]) -> None:
        unknown = [label for label in initial_batches if label not in assignment]
        if unknown:
            raise ValueError(f"Initial batches contain {len(unknown)} unknown cluster labels, "
                             f"e.g. {unknown[0]}")
        if len(set(initial_batches)) != len(initial_batches):
            raise ValueError("Initial batches list a cluster label more than once")
        if len(initial_batches) != len(assignment):
            raise ValueError(f"Initial batches cover {len(initial_batches)} of "
                             f"{len(assignment)} clusters")

    def guided_order(self, assignment: ClusterAssignment) -> List[str]:
        """Order labels so that clusters a low resolution ANI pass groups together are adjacent."""
        labels = assignment.labels()
        if len(labels) < 2:
            return labels

        rep_to_label = {assignment.representative(label): label for label in labels}
        logger.info(f"Guiding batches with low resolution ANI on {len(labels)} clusters...")
        rep_to_group = group_representatives(list(rep_to_label), self.estimator,
                                             self.guide_params, self.linkage_params)

        keyed = sorted((rep_to_group[rep], label) for rep, label in rep_to_label.items())
        return [label for _, label in keyed]


def group_representatives(files: List[str], estimator: SimilarityEstimator,
                          skani_params: SkaniParams,
                          linkage_params: LinkageParams) -> Dict[str, int]:
    """Cluster files by ANI and return the flat group of each file.

    Args:
        files: Representative files to compare
        estimator: ANI estimator
        skani_params: Estimator parameters
        linkage_params: Linkage method and ANI threshold for the cut

    Returns:
        Dict mapping every file to its group id

    Raises:
        SketchingError: If a file is missing from the ANI results
    """
    files = sorted(set(files))
    if not files:
        return {}
    if len(files) == 1:
        return {files[0]: 0}

    ani_result = ani_from_fastx_files(files, estimator, skani_params)
    ids, condensed = similarities_to_condensed(ani_result, skani_params.min_aligned_frac)
    groups = cluster_distances(condensed, len(ids), linkage_params)
    file_to_group = dict(zip(ids, groups))

    missing = [path for path in files if path not in file_to_group]
    if missing:
        for path in missing:
            logger.error(f"No ANI results for {path}")
        raise SketchingError(f"{missing[0]} failed skani sketching! Check the log for records "
                             f"containing 'is not a valid fasta/fastq file'.")
    return file_to_group
