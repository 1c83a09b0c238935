"""
Utility functions for panaani.

This module provides helpers for reading input lists and cluster tables and
for checking sequence files.
"""

import gzip
import logging
from typing import Dict, Iterable, List, Tuple

from Bio import SeqIO

from .distances import PairwiseSimilarity

FASTQ_SUFFIXES = ('.fastq', '.fq')


def read_input_list(path: str) -> List[str]:
    """Read sequence file paths from the first tab-separated column of a file."""
    seq_files = []
    with open(path) as f:
        for line in f:
            line = line.rstrip('\n')
            if not line.strip():
                continue
            seq_files.append(line.split('\t')[0])
    return seq_files


def read_external_clustering(path: str) -> Dict[str, str]:
    """Read a two column ``sequence<TAB>cluster`` table.

    Raises:
        ValueError: If a line does not have two columns
    """
    seq_to_cluster = {}
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.rstrip('\n')
            if not line.strip():
                continue
            parts = line.split('\t')
            if len(parts) < 2:
                raise ValueError(f"{path} line {line_num}: expected sequence and cluster columns")
            seq_to_cluster[parts[0]] = parts[1]
    return seq_to_cluster


def external_labels_for(seq_files: List[str], seq_to_cluster: Dict[str, str]) -> List[str]:
    """Cluster label of each sequence, in the order of seq_files.

    Raises:
        ValueError: If a sequence is missing from the clustering
    """
    missing = [seq for seq in seq_files if seq not in seq_to_cluster]
    if missing:
        raise ValueError(f"{len(missing)} sequences have no cluster in the external clustering, "
                         f"e.g. {missing[0]}")
    return [seq_to_cluster[seq] for seq in seq_files]


def read_similarities(path: str) -> List[PairwiseSimilarity]:
    """Read ``id_a<TAB>id_b<TAB>ani`` lines as written by ``panaani dist``."""
    results = []
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.rstrip('\n')
            if not line.strip():
                continue
            parts = line.split('\t')
            if len(parts) < 3:
                raise ValueError(f"{path} line {line_num}: expected three columns")
            results.append(PairwiseSimilarity(parts[0], parts[1], float(parts[2])))
    return results


def deduplicate(seq_files: Iterable[str]) -> List[str]:
    """Drop repeated entries, keeping the first occurrence."""
    seen = set()
    unique = []
    for seq in seq_files:
        if seq not in seen:
            seen.add(seq)
            unique.append(seq)
    return unique


def check_fastx_file(path: str) -> bool:
    """Check that a file holds at least one fasta or fastq record."""
    name = path[:-3] if path.endswith('.gz') else path
    fmt = "fastq" if name.lower().endswith(FASTQ_SUFFIXES) else "fasta"
    opener = gzip.open if path.endswith('.gz') else open

    try:
        with opener(path, 'rt') as handle:
            record = next(SeqIO.parse(handle, fmt), None)
    except (OSError, ValueError) as e:
        logging.debug(f"Could not parse {path}: {e}")
        return False

    return record is not None and len(record.seq) > 0


def format_assignments(pairs: List[Tuple[str, str]]) -> str:
    """Format (sequence, cluster) pairs as tab-separated lines."""
    return "".join(f"{seq}\t{label}\n" for seq, label in pairs)


def format_similarities(results: List[PairwiseSimilarity]) -> str:
    """Format similarities as tab-separated lines, writing invalid ones as 0."""
    lines = []
    for result in results:
        similarity = result.similarity if result.similarity is not None else 0
        lines.append(f"{result.id_a}\t{result.id_b}\t{similarity}\n")
    return "".join(lines)
