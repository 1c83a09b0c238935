"""
panaani: Pangenome-aware dereplication of bacterial genomes into ANI clusters

Genomes are dereplicated in batches of growing size; merged clusters are
summarized by pangenome graphs that represent them in later rounds, and a
final round over all remaining clusters decides the result.
"""

__version__ = "0.1.0"

from .assignments import ClusterAssignment
from .batching import BatchScheduler, chunk_labels, grow_batch_size
from .dendrogram import (
    Dendrogram,
    LinkageParams,
    MergeStep,
    build_dendrogram,
    cut_dendrogram,
)
from .dereplicate import DereplicateParams, Dereplicator, dereplicate
from .distances import (
    PairwiseSimilarity,
    SimilarityEstimator,
    SketchingError,
    SkaniEstimator,
    SkaniParams,
    similarities_to_condensed,
)
from .pangenome import GGCATBuilder, GGCATParams, PangenomeBuilder

__all__ = [
    "ClusterAssignment",
    "BatchScheduler",
    "chunk_labels",
    "grow_batch_size",
    "Dendrogram",
    "LinkageParams",
    "MergeStep",
    "build_dendrogram",
    "cut_dendrogram",
    "DereplicateParams",
    "Dereplicator",
    "dereplicate",
    "PairwiseSimilarity",
    "SimilarityEstimator",
    "SketchingError",
    "SkaniEstimator",
    "SkaniParams",
    "similarities_to_condensed",
    "GGCATBuilder",
    "GGCATParams",
    "PangenomeBuilder",
]
