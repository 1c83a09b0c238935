"""Pangenome graph construction with GGCAT."""

import logging
import shutil
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

logger = logging.getLogger(__name__)

UNITIG_TYPES = {
    "greedymatchtigs": "--greedy-matchtigs",
    "unitiglinks": "--generate-maximal-unitigs-links",
    "eulertigs": "--eulertigs",
    "pathtigs": "--pathtigs",
}


@dataclass
class GGCATParams:
    """Parameters for building compacted de Bruijn graphs with GGCAT."""
    # k-mer counting
    kmer_size: int = 51
    kmer_min_multiplicity: int = 1

    # Graph construction
    minimizer_length: Optional[int] = None
    no_reverse_complement: bool = False
    unitig_type: str = "greedymatchtigs"

    # Resources
    threads: int = 1
    memory: int = 4
    temp_dir_path: str = "/tmp"

    # Intermediate outputs
    intermediate_compression_level: Optional[int] = None


class PangenomeBuilder(ABC):
    """Abstract interface for building a pangenome representation of a cluster."""

    @abstractmethod
    def ensure_initialized(self) -> None:
        """Prepare process-wide resources. Safe to call any number of times."""
        pass

    @abstractmethod
    def build(self, files: List[str], graph_path: str) -> None:
        """Build a pangenome graph from files and write it to graph_path."""
        pass


class GGCATBuilder(PangenomeBuilder):
    """Builds pangenome graphs by running ``ggcat build``."""

    def __init__(self, params: Optional[GGCATParams] = None):
        self.params = params or GGCATParams()
        self._initialized = False
        self._init_lock = threading.Lock()

    def ensure_initialized(self) -> None:
        with self._init_lock:
            if self._initialized:
                return

            if shutil.which('ggcat') is None:
                raise RuntimeError("ggcat command not found. Please ensure ggcat is installed.")

            Path(self.params.temp_dir_path).mkdir(parents=True, exist_ok=True)
            logger.debug(f"GGCAT initialized with {self.params.threads} threads, "
                         f"{self.params.memory} GB memory, temp dir {self.params.temp_dir_path}")
            self._initialized = True

    def build_command(self, files: List[str], graph_path: str) -> List[str]:
        params = self.params
        cmd = [
            'ggcat', 'build',
            '-k', str(params.kmer_size),
            '-j', str(params.threads),
            '-m', str(params.memory),
            '-s', str(params.kmer_min_multiplicity),
            '-t', params.temp_dir_path,
            '-o', graph_path,
        ]
        if params.minimizer_length is not None:
            cmd.extend(['--minimizer-length', str(params.minimizer_length)])
        if params.no_reverse_complement:
            cmd.append('--forward-only')

        unitig_flag = UNITIG_TYPES.get(params.unitig_type)
        if unitig_flag is None:
            logger.debug(f"Unknown unitig type '{params.unitig_type}', using greedy matchtigs")
            unitig_flag = UNITIG_TYPES["greedymatchtigs"]
        cmd.append(unitig_flag)

        if params.intermediate_compression_level is not None:
            cmd.extend(['--intermediate-compression-level', str(params.intermediate_compression_level)])

        cmd.extend(files)
        return cmd

    def build(self, files: List[str], graph_path: str) -> None:
        self.ensure_initialized()

        logger.debug(f"Building graph {graph_path} from {len(files)} sequences:")
        for path in files:
            logger.debug(f"\t{path}")

        Path(graph_path).parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(files, graph_path)

        try:
            start_time = time.time()
            result = subprocess.run(cmd, check=True, capture_output=True, text=True)
            logger.debug(f"ggcat completed in {time.time() - start_time:.2f}s")
        except subprocess.CalledProcessError as e:
            logger.error(f"ggcat failed: {e}")
            logger.error(f"ggcat stderr: {e.stderr}")
            raise
        except FileNotFoundError:
            raise RuntimeError("ggcat command not found. Please ensure ggcat is installed.")

        for line in (result.stdout or "").splitlines():
            logger.debug(line)


def build_pangenome_representations(clusters: Dict[str, List[str]],
                                    builder: PangenomeBuilder,
                                    graph_path_for: Optional[Callable[[str], str]] = None,
                                    show_progress: bool = False) -> int:
    """Build a pangenome graph for every cluster with more than one member.

    Args:
        clusters: Dict mapping cluster label -> member sequence files
        builder: PangenomeBuilder used for the graphs
        graph_path_for: Maps a cluster label to its graph file (default: the label)
        show_progress: Show a progress bar

    Returns:
        Number of graphs built
    """
    to_build = [(label, members) for label, members in clusters.items() if len(members) > 1]
    if not to_build:
        return 0

    builder.ensure_initialized()
    graph_path_for = graph_path_for or (lambda label: label)

    for label, members in tqdm(to_build, desc="Building pangenome graphs", unit="graph",
                               disable=not show_progress):
        builder.build(members, graph_path_for(label))

    return len(to_build)
