"""Iterative pangenome-aware dereplication of genomes into ANI clusters.

Comparing every genome against every other is infeasible for tens of
thousands of inputs, so clusters are first dereplicated in batches of
growing size. Each batch is clustered by ANI, every merged cluster is
summarized by a pangenome graph, and the graphs stand in for their
members in the next round. Once the clusters fit in a single batch (or
the iteration cap is hit) one final round over all remaining clusters
decides the result.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .assignments import ClusterAssignment, format_cluster_label, new_salt, relabel_singletons
from .batching import (
    BatchScheduler,
    avoid_singleton_remainder,
    batch_size_schedule,
    chunk_labels,
    group_representatives,
    grow_batch_size,
)
from .dendrogram import LinkageParams
from .distances import SimilarityEstimator, SkaniParams
from .pangenome import PangenomeBuilder, build_pangenome_representations

logger = logging.getLogger(__name__)

FINAL_PREFIX = "panANI-"


@dataclass
class DereplicateParams:
    """Parameters of the iterative dereplication loop.

    Attributes:
        batch_step: Initial batch size and the linear growth step
        batch_step_strategy: "linear" or "double"; anything else grows linearly
        max_iters: Maximum number of batched rounds before the final round
        temp_dir: Directory for the graphs of intermediate rounds
        guided: Compose batches from a low resolution ANI clustering
        external_clustering: Initial cluster label of each input sequence
        initial_batches: Label order used to form the batches of the first round
        out_prefix: Prefix for the graph files of the final round
        chunk_workers: Number of batches dereplicated concurrently
        show_progress: Show progress bars
    """
    batch_step: int = 50
    batch_step_strategy: str = "linear"
    max_iters: int = 10
    temp_dir: str = "./"
    guided: bool = False
    external_clustering: Optional[List[str]] = None
    initial_batches: Optional[List[str]] = None
    out_prefix: str = ""
    chunk_workers: int = 1
    show_progress: bool = False


class Dereplicator:
    """Runs batched dereplication rounds followed by one final full round."""

    def __init__(self,
                 estimator: SimilarityEstimator,
                 builder: PangenomeBuilder,
                 params: Optional[DereplicateParams] = None,
                 skani_params: Optional[SkaniParams] = None,
                 linkage_params: Optional[LinkageParams] = None):
        self.estimator = estimator
        self.builder = builder
        self.params = params or DereplicateParams()
        self.skani_params = skani_params or SkaniParams()
        self.linkage_params = linkage_params or LinkageParams()
        self.scheduler = BatchScheduler(estimator, linkage_params=self.linkage_params)

        if self.params.batch_step < 1:
            raise ValueError(f"Batch step must be positive, got {self.params.batch_step}")

    def dereplicate(self, seq_files: List[str]) -> List[Tuple[str, str]]:
        """Dereplicate sequence files into ANI clusters.

        Args:
            seq_files: Input sequence files

        Returns:
            (sequence, cluster label) pairs, one per input, sorted by label and sequence
        """
        params = self.params
        assignment = self.initial_assignment(seq_files)
        logger.debug(f"Dereplicate input contains {len(seq_files)} sequences "
                     f"in {len(assignment)} clusters")
        planned = batch_size_schedule(len(assignment), params.batch_step,
                                      params.batch_step_strategy)[:params.max_iters]
        logger.debug(f"Planned batch sizes before merges: {planned}")

        iteration = 0
        batch_size = params.batch_step
        n_remaining = len(assignment)

        while batch_size < n_remaining and iteration < params.max_iters:
            logger.info(f"Iteration {iteration + 1} processing {n_remaining} clusters "
                        f"in batches of {batch_size}...")
            assignment = self.run_round(assignment, iteration, batch_size)

            n_remaining = len(assignment)
            iteration += 1
            batch_size = grow_batch_size(batch_size, params.batch_step, params.batch_step_strategy)
            batch_size = avoid_singleton_remainder(n_remaining, batch_size)

        logger.info(f"Final iteration processing {n_remaining} clusters...")
        final = self.dereplicate_chunk(assignment, FINAL_PREFIX, final=True)
        logger.info(f"Created {len(final)} clusters from {len(seq_files)} sequences")

        return final.flatten()

    def initial_assignment(self, seq_files: List[str]) -> ClusterAssignment:
        """Starting clusters: one per sequence, or the external clustering if given.

        External clusters with several members need a representative file.
        A label that names an existing file is used as is; otherwise the
        cluster's graph is built into the temp dir.
        """
        assignment = ClusterAssignment.from_sequences(seq_files, self.params.external_clustering)
        if self.params.external_clustering is None:
            return assignment

        missing = {}
        for label in assignment.labels():
            members = assignment.members(label)
            if len(members) > 1 and not os.path.isfile(label):
                missing[label] = members

        if not missing:
            return assignment

        logger.info(f"Building pangenome graphs for {len(missing)} external clusters...")
        salt = new_salt()
        graph_paths = {label: os.path.join(self.params.temp_dir, f"init_{salt}-{i}.dbg.fasta")
                       for i, label in enumerate(missing)}
        build_pangenome_representations(missing, self.builder,
                                        graph_path_for=graph_paths.get,
                                        show_progress=self.params.show_progress)

        prepared = ClusterAssignment()
        for label in assignment.labels():
            prepared.add_cluster(label, assignment.members(label),
                                 graph_paths.get(label, assignment.representative(label)))
        return prepared

    def run_round(self, assignment: ClusterAssignment, iteration: int, batch_size: int) -> ClusterAssignment:
        """Dereplicate the current clusters in batches of batch_size."""
        params = self.params
        ordering = self.scheduler.order_labels(assignment, iteration,
                                               initial_batches=params.initial_batches,
                                               guided=params.guided)
        chunks = chunk_labels(ordering, batch_size)

        def process(labels: List[str]) -> ClusterAssignment:
            prefix = os.path.join(params.temp_dir, f"{iteration}_{new_salt()}-")
            return self.dereplicate_chunk(assignment.subset(labels), prefix)

        if params.chunk_workers > 1 and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=params.chunk_workers) as executor:
                # map keeps batch order and waits for every batch before returning
                results = list(tqdm(executor.map(process, chunks), total=len(chunks),
                                    desc=f"Iteration {iteration + 1}", unit="batch",
                                    disable=not params.show_progress))
        else:
            results = [process(labels) for labels in tqdm(chunks, desc=f"Iteration {iteration + 1}",
                                                          unit="batch",
                                                          disable=not params.show_progress)]

        return ClusterAssignment.merge(results)

    def dereplicate_chunk(self, assignment: ClusterAssignment, prefix: str,
                          final: bool = False) -> ClusterAssignment:
        """Cluster the given clusters by ANI and merge them into new clusters.

        Every member of an old cluster moves to the same new cluster. New
        clusters with one member are named after that member; the others get
        a pangenome graph built from their members.

        Args:
            assignment: Clusters to dereplicate together
            prefix: Prefix for the labels of new clusters
            final: Whether this is the final round (graphs go to out_prefix + label)

        Returns:
            New ClusterAssignment covering the same sequences

        Raises:
            SketchingError: If a cluster representative has no ANI results
        """
        reps = {label: assignment.representative(label) for label in assignment.labels()}

        logger.debug(f"Calculating ANIs between {len(reps)} clusters...")
        rep_to_group = group_representatives(list(reps.values()), self.estimator,
                                             self.skani_params, self.linkage_params)

        merged: Dict[str, List[str]] = {}
        for label, rep in reps.items():
            new_label = format_cluster_label(prefix, rep_to_group[rep])
            merged.setdefault(new_label, []).extend(assignment.members(label))

        def graph_path_for(label: str) -> str:
            return self.params.out_prefix + label if final else label

        new_assignment = relabel_singletons(ClusterAssignment(
            merged, {label: graph_path_for(label) for label in merged}))

        logger.debug("Building pangenome graphs...")
        build_pangenome_representations(new_assignment.clusters, self.builder,
                                        graph_path_for=graph_path_for,
                                        show_progress=self.params.show_progress and final)
        return new_assignment


def dereplicate(seq_files: List[str],
                estimator: SimilarityEstimator,
                builder: PangenomeBuilder,
                params: Optional[DereplicateParams] = None,
                skani_params: Optional[SkaniParams] = None,
                linkage_params: Optional[LinkageParams] = None) -> List[Tuple[str, str]]:
    """Convenience wrapper around Dereplicator.dereplicate."""
    return Dereplicator(estimator, builder, params, skani_params, linkage_params).dereplicate(seq_files)
