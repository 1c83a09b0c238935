"""Hierarchical clustering of ANI distances and flat cuts of the resulting dendrogram."""

import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
from scipy.cluster.hierarchy import linkage

logger = logging.getLogger(__name__)

LINKAGE_METHODS = ("single", "complete", "average", "weighted", "ward", "centroid", "median")


@dataclass
class LinkageParams:
    """Hierarchical clustering parameters."""
    method: str = "single"
    similarity_threshold: float = 0.97


@dataclass
class MergeStep:
    """One merge in a dendrogram: two child node indices and their dissimilarity."""
    cluster1: int
    cluster2: int
    dissimilarity: float
    size: int = 2


@dataclass
class Dendrogram:
    """Binary merge tree over ``observations`` leaves.

    Leaves are indices 0..N-1 and step ``i`` creates internal node ``N + i``.
    Steps are ordered from the first (most similar) merge to the last.
    """
    observations: int
    steps: List[MergeStep] = field(default_factory=list)

    @classmethod
    def from_linkage_matrix(cls, matrix: np.ndarray) -> "Dendrogram":
        """Build a Dendrogram from a scipy linkage matrix."""
        steps = [
            MergeStep(cluster1=int(row[0]), cluster2=int(row[1]),
                      dissimilarity=float(row[2]), size=int(row[3]))
            for row in matrix
        ]
        return cls(observations=len(steps) + 1, steps=steps)


def build_dendrogram(condensed: np.ndarray, n: int, method: str = "single") -> Dendrogram:
    """Run hierarchical clustering on a condensed distance vector.

    Args:
        condensed: Condensed distances of length n * (n - 1) / 2
        n: Number of observations
        method: One of LINKAGE_METHODS

    Returns:
        Dendrogram with n - 1 merge steps

    Raises:
        ValueError: If the method is unknown or the vector length does not match n
    """
    if method not in LINKAGE_METHODS:
        raise ValueError(f"Unknown linkage method: {method}. "
                         f"Choose one of {', '.join(LINKAGE_METHODS)}.")
    if n < 2:
        raise ValueError(f"Need at least 2 observations to build a dendrogram, got {n}")

    condensed = np.asarray(condensed, dtype=np.float64)
    if len(condensed) != n * (n - 1) // 2:
        raise ValueError(f"Condensed distance vector has length {len(condensed)}, "
                         f"expected {n * (n - 1) // 2} for {n} observations")

    matrix = linkage(condensed, method=method)
    return Dendrogram.from_linkage_matrix(matrix)


def cut_dendrogram(dendrogram: Dendrogram, similarity_threshold: float) -> List[int]:
    """Cut a dendrogram into flat groups at 1 - similarity_threshold.

    Merge steps are visited from the root down, so a node always has its
    group decided before its children. Every merge at or below the cutoff
    passes its group on to both children; leaves that no such merge reaches
    become singleton groups.

    Args:
        dendrogram: Merge tree over N leaves
        similarity_threshold: Minimum ANI for two leaves to share a group

    Returns:
        List of N group ids, contiguous from 0
    """
    cutoff = 1.0 - similarity_threshold
    num_seqs = dendrogram.observations
    if num_seqs == 0:
        return []

    num_nodes = 2 * num_seqs - 1
    membership = [None] * num_nodes
    num_groups = 0

    for step_index in range(len(dendrogram.steps) - 1, -1, -1):
        step = dendrogram.steps[step_index]
        node = step_index + num_seqs
        if step.dissimilarity <= cutoff:
            if membership[node] is None:
                membership[node] = num_groups
                num_groups += 1
            membership[step.cluster1] = membership[node]
            membership[step.cluster2] = membership[node]

    groups = []
    for group in membership[:num_seqs]:
        if group is None:
            group = num_groups
            num_groups += 1
        groups.append(group)

    # Inversions (centroid, median) can give an id to a node whose child
    # stops it from reaching any leaf, so close the gaps
    renumber = {group: i for i, group in enumerate(sorted(set(groups)))}
    return [renumber[group] for group in groups]


def cluster_distances(condensed: np.ndarray, n: int, params: LinkageParams) -> List[int]:
    """Cluster n observations from their condensed distances into flat groups."""
    if n == 0:
        return []
    if n == 1:
        return [0]

    dendrogram = build_dendrogram(condensed, n, params.method)
    groups = cut_dendrogram(dendrogram, params.similarity_threshold)
    logger.debug(f"Cut {n} observations into {max(groups) + 1} groups "
                 f"at ANI threshold {params.similarity_threshold}")
    return groups
