"""Cluster assignment bookkeeping between dereplication rounds."""

import uuid
from typing import Dict, Iterable, List, Optional, Tuple


class ClusterAssignment:
    """Mapping from cluster label to member sequence files.

    Each cluster also has a representative file, which is what gets compared
    when clusters are dereplicated against each other: the sequence itself
    for a singleton, the pangenome graph for a merged cluster.

    An assignment is treated as a snapshot. Rounds build new assignments
    with ``subset`` and ``merge`` instead of modifying an existing one.
    """

    def __init__(self, clusters: Optional[Dict[str, List[str]]] = None,
                 representatives: Optional[Dict[str, str]] = None):
        self.clusters: Dict[str, List[str]] = {}
        self.representatives: Dict[str, str] = {}
        for label, members in (clusters or {}).items():
            rep = (representatives or {}).get(label)
            self.add_cluster(label, members, rep)

    @classmethod
    def from_sequences(cls, seq_files: List[str],
                       labels: Optional[List[str]] = None) -> "ClusterAssignment":
        """Group sequences by label, one singleton cluster per sequence by default.

        Args:
            seq_files: Sequence file identifiers
            labels: Cluster label for each sequence (parallel to seq_files)

        Raises:
            ValueError: If a sequence is listed twice or labels has the wrong length
        """
        if labels is None:
            labels = seq_files
        if len(labels) != len(seq_files):
            raise ValueError(f"Got {len(labels)} cluster labels for {len(seq_files)} sequences")

        seen = set()
        clusters: Dict[str, List[str]] = {}
        for seq, label in zip(seq_files, labels):
            if seq in seen:
                raise ValueError(f"Sequence {seq} is listed more than once")
            seen.add(seq)
            clusters.setdefault(label, []).append(seq)

        assignment = cls()
        for label, members in clusters.items():
            # Singletons are represented by the sequence itself
            rep = members[0] if len(members) == 1 else label
            assignment.add_cluster(label, members, rep)
        return assignment

    def add_cluster(self, label: str, members: List[str], representative: Optional[str] = None) -> None:
        if label in self.clusters:
            raise ValueError(f"Cluster label {label} is already in use")
        if not members:
            raise ValueError(f"Cluster {label} has no members")
        self.clusters[label] = list(members)
        self.representatives[label] = representative if representative is not None else label

    def labels(self) -> List[str]:
        return list(self.clusters.keys())

    def members(self, label: str) -> List[str]:
        return self.clusters[label]

    def representative(self, label: str) -> str:
        return self.representatives[label]

    def sequences(self) -> List[str]:
        return [seq for members in self.clusters.values() for seq in members]

    def subset(self, labels: Iterable[str]) -> "ClusterAssignment":
        """New assignment holding only the given clusters."""
        subset = ClusterAssignment()
        for label in labels:
            subset.add_cluster(label, self.clusters[label], self.representatives[label])
        return subset

    @classmethod
    def merge(cls, assignments: Iterable["ClusterAssignment"]) -> "ClusterAssignment":
        """Combine disjoint assignments into one."""
        merged = cls()
        for assignment in assignments:
            for label, members in assignment.clusters.items():
                merged.add_cluster(label, members, assignment.representatives[label])
        return merged

    def flatten(self) -> List[Tuple[str, str]]:
        """(sequence, label) pairs sorted by label, then sequence."""
        pairs = [(seq, label) for label, members in self.clusters.items() for seq in members]
        return sorted(pairs, key=lambda x: (x[1], x[0]))

    def __len__(self) -> int:
        return len(self.clusters)

    def __contains__(self, label: str) -> bool:
        return label in self.clusters


def new_salt() -> str:
    """Unique token that keeps output file names of concurrent chunks apart."""
    return uuid.uuid4().hex[:16]


def format_cluster_label(prefix: str, group: int) -> str:
    """Label (and graph file name) of a merged cluster.

    Examples:
        >>> format_cluster_label("panANI-", 3)
        'panANI-3.dbg.fasta'
    """
    return f"{prefix}{group}.dbg.fasta"


def relabel_singletons(assignment: ClusterAssignment) -> ClusterAssignment:
    """Rename every one-member cluster after its only sequence."""
    renamed = ClusterAssignment()
    for label, members in assignment.clusters.items():
        if len(members) == 1:
            renamed.add_cluster(members[0], members, members[0])
        else:
            renamed.add_cluster(label, members, assignment.representatives[label])
    return renamed
