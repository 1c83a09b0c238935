"""ANI estimation with skani and conversion of ANI results into distances."""

import logging
import math
import re
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import combinations
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# skani warns about (and skips) files it cannot sketch instead of failing
INVALID_FILE_PATTERN = re.compile(r"File (\S+) is not a valid fasta/fastq file")


class SketchingError(RuntimeError):
    """Raised when a sequence has no ANI results, usually because it could not be sketched."""
    pass


@dataclass
class SkaniParams:
    """Parameters forwarded to skani.

    Defaults match skani's own except for ``min_aligned_frac``, which is
    applied by panaani after the fact.
    """
    # k-mer sketching
    kmer_subsampling_rate: int = 30
    marker_compression_factor: int = 1000
    rescue_small: bool = False

    # ANI estimation
    clip_tails: bool = False
    median: bool = False
    adjust_ani: bool = False

    # Results reporting
    min_aligned_frac: float = 0.0
    bootstrap_ci: bool = False


# Cheap, low resolution settings used to decide batch composition
GUIDE_SKANI_PARAMS = SkaniParams(
    kmer_subsampling_rate=2500,
    marker_compression_factor=2500,
    clip_tails=True,
)


@dataclass
class PairwiseSimilarity:
    """ANI between two files. ``similarity`` is None when no usable alignment was found."""
    id_a: str
    id_b: str
    similarity: Optional[float]
    align_fraction_ref: float = 1.0
    align_fraction_query: float = 1.0


def filter_similarity(similarity: Optional[float], align_fraction_ref: float,
                      align_fraction_query: float, min_aligned_frac_ref: float = 0.0,
                      min_aligned_frac_query: float = 0.0) -> Optional[float]:
    """Return the similarity if it is usable for clustering, otherwise None.

    A similarity is usable when it lies strictly inside (0, 1) and the
    alignment covers more than the required fraction of at least one of the
    two sequences.
    """
    if similarity is None or math.isnan(similarity):
        return None
    if not 0.0 < similarity < 1.0:
        return None
    if align_fraction_ref > min_aligned_frac_ref or align_fraction_query > min_aligned_frac_query:
        return similarity
    return None


def similarities_to_condensed(results: List[PairwiseSimilarity],
                              min_aligned_frac: float = 0.0) -> Tuple[List[str], np.ndarray]:
    """Convert pairwise ANI results into a condensed distance vector.

    The results are canonicalized and sorted by (id_a, id_b) first, so the
    output does not depend on the order in which the estimator produced them.

    Args:
        results: Pairwise similarities from a SimilarityEstimator
        min_aligned_frac: Minimum alignment fraction required on either side

    Returns:
        Tuple of (ids, condensed) where ids is the sorted list of identifiers
        present in the results and condensed holds 1 - ANI for every pair in
        scipy's condensed order. Invalid or missing pairs get distance 1.0.
    """
    canonical = []
    for result in results:
        if result.id_a == result.id_b:
            continue
        if result.id_a < result.id_b:
            canonical.append((result.id_a, result.id_b, result))
        else:
            canonical.append((result.id_b, result.id_a, result))
    canonical.sort(key=lambda x: (x[0], x[1]))

    ids = sorted({x[0] for x in canonical} | {x[1] for x in canonical})
    index = {seq_id: i for i, seq_id in enumerate(ids)}
    n = len(ids)
    condensed = np.ones(n * (n - 1) // 2, dtype=np.float64)

    seen = set()
    for id_a, id_b, result in canonical:
        if (id_a, id_b) in seen:
            continue
        seen.add((id_a, id_b))

        similarity = filter_similarity(result.similarity,
                                       result.align_fraction_ref,
                                       result.align_fraction_query,
                                       min_aligned_frac, min_aligned_frac)
        if similarity is None:
            continue

        i, j = index[id_a], index[id_b]
        condensed[n * i - i * (i + 1) // 2 + (j - i - 1)] = 1.0 - similarity

    return ids, condensed


class SimilarityEstimator(ABC):
    """Abstract interface for all-vs-all ANI estimation between files."""

    @abstractmethod
    def estimate(self, files: List[str], params: SkaniParams) -> List[PairwiseSimilarity]:
        """Estimate ANI for every unordered pair of files.

        Files that cannot be processed must not appear in the results.
        """
        pass


class SkaniEstimator(SimilarityEstimator):
    """Runs ``skani triangle`` and parses its edge list output."""

    def __init__(self, threads: int = 1, temp_dir: Optional[str] = None):
        self.threads = threads
        self.temp_dir = temp_dir

    def build_command(self, list_file: Path, params: SkaniParams) -> List[str]:
        cmd = [
            'skani', 'triangle',
            '-l', str(list_file),
            '-E',
            '--min-af', '0',
            '-t', str(self.threads),
            '-c', str(params.kmer_subsampling_rate),
            '-m', str(params.marker_compression_factor),
        ]
        if params.clip_tails:
            cmd.append('--robust')
        if params.median:
            cmd.append('--median')
        if not params.adjust_ani:
            cmd.append('--no-learned-ani')
        if params.rescue_small:
            cmd.append('--small-genomes')
        if params.bootstrap_ci:
            cmd.append('--ci')
        return cmd

    def estimate(self, files: List[str], params: SkaniParams) -> List[PairwiseSimilarity]:
        if len(files) < 2:
            return []

        with tempfile.TemporaryDirectory(dir=self.temp_dir) as tmpdir:
            list_file = Path(tmpdir) / "skani_inputs.txt"
            with open(list_file, 'w') as f:
                for path in files:
                    f.write(f"{path}\n")

            cmd = self.build_command(list_file, params)
            logger.debug(f"Running skani on {len(files)} files with {self.threads} threads")

            try:
                start_time = time.time()
                result = subprocess.run(cmd, check=True, capture_output=True, text=True)
                logger.debug(f"skani completed in {time.time() - start_time:.2f}s")
            except subprocess.CalledProcessError as e:
                logger.error(f"skani failed: {e}")
                logger.error(f"skani stderr: {e.stderr}")
                raise
            except FileNotFoundError:
                raise RuntimeError("skani command not found. Please ensure skani is installed.")

        invalid_files = set(INVALID_FILE_PATTERN.findall(result.stderr or ""))
        for path in sorted(invalid_files):
            logger.warning(f"File {path} is not a valid fasta/fastq file and was not sketched")

        return self.parse_output(result.stdout, files, params, invalid_files)

    @staticmethod
    def parse_output(stdout: str, files: List[str], params: SkaniParams,
                     invalid_files: Optional[set] = None) -> List[PairwiseSimilarity]:
        """Parse ``skani triangle -E`` output into similarities for all sketched pairs.

        skani only reports pairs that pass its screening step, so every other
        pair among the sketched files is reported as invalid.
        """
        invalid_files = invalid_files or set()
        reported = {}
        columns = None

        for line in stdout.splitlines():
            if not line.strip():
                continue
            parts = line.rstrip('\n').split('\t')
            if columns is None and parts[0] == 'Ref_file':
                columns = {name: i for i, name in enumerate(parts)}
                continue
            if columns is None:
                continue

            ref_file = parts[columns['Ref_file']]
            query_file = parts[columns['Query_file']]
            ani = float(parts[columns['ANI']]) / 100.0
            af_ref = float(parts[columns['Align_fraction_ref']]) / 100.0
            af_query = float(parts[columns['Align_fraction_query']]) / 100.0

            key = tuple(sorted((ref_file, query_file)))
            if key[0] != ref_file:
                af_ref, af_query = af_query, af_ref
            reported[key] = PairwiseSimilarity(
                id_a=key[0],
                id_b=key[1],
                similarity=filter_similarity(ani, af_ref, af_query,
                                             params.min_aligned_frac,
                                             params.min_aligned_frac),
                align_fraction_ref=af_ref,
                align_fraction_query=af_query,
            )

        sketched = sorted(set(files) - invalid_files)
        results = []
        for id_a, id_b in combinations(sketched, 2):
            pair = reported.get((id_a, id_b))
            if pair is None:
                pair = PairwiseSimilarity(id_a=id_a, id_b=id_b, similarity=None,
                                          align_fraction_ref=0.0, align_fraction_query=0.0)
            results.append(pair)

        logger.debug(f"skani reported {len(reported)} of {len(results)} pairs")
        return results


def ani_from_fastx_files(files: List[str], estimator: SimilarityEstimator,
                         params: Optional[SkaniParams] = None) -> List[PairwiseSimilarity]:
    """Estimate ANI between files and return the results sorted by (id_a, id_b)."""
    params = params or SkaniParams()
    results = estimator.estimate(sorted(set(files)), params)
    canonical = []
    for result in results:
        if result.id_a > result.id_b:
            result = PairwiseSimilarity(result.id_b, result.id_a, result.similarity,
                                        result.align_fraction_query, result.align_fraction_ref)
        canonical.append(result)
    return sorted(canonical, key=lambda x: (x.id_a, x.id_b))
