"""
Command-line interface for panaani.
"""

import argparse
import logging
import sys
from typing import List

from .assignments import ClusterAssignment, format_cluster_label, relabel_singletons
from .dendrogram import LINKAGE_METHODS, LinkageParams, cluster_distances
from .dereplicate import FINAL_PREFIX, DereplicateParams, Dereplicator
from .distances import SkaniEstimator, SkaniParams, ani_from_fastx_files, similarities_to_condensed
from .pangenome import UNITIG_TYPES, GGCATBuilder, GGCATParams, build_pangenome_representations
from .utils import (
    check_fastx_file,
    deduplicate,
    external_labels_for,
    format_assignments,
    format_similarities,
    read_external_clustering,
    read_input_list,
    read_similarities,
)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr  # Log to stderr so stdout is clean for output
    )


def add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('seq_files', nargs='*', help='Input sequence files (fasta/fastq)')
    parser.add_argument('-l', '--input-list', help='File listing input sequence files, one per line')
    parser.add_argument('--check-inputs', action='store_true',
                        help='Check that every input parses as fasta/fastq before starting')


def add_skani_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('ANI estimation')
    group.add_argument('--kmer-subsampling-rate', type=int, default=30,
                       help='skani k-mer subsampling rate (default: 30)')
    group.add_argument('--marker-compression-factor', type=int, default=1000,
                       help='skani marker k-mer compression factor (default: 1000)')
    group.add_argument('--min-af', type=float, default=0.15,
                       help='Minimum aligned fraction on either genome for a valid ANI (default: 0.15)')
    group.add_argument('--rescue-small', action='store_true',
                       help='Sketch small genomes with a denser sampling')
    group.add_argument('--clip-tails', action='store_true',
                       help='Trim the tails of the ANI distribution (skani --robust)')
    group.add_argument('--median', action='store_true', help='Use median instead of mean ANI')
    group.add_argument('--adjust-ani', action='store_true', help='Use skani learned ANI correction')


def add_linkage_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('ANI clustering')
    group.add_argument('--ani-threshold', type=float, default=0.97,
                       help='ANI threshold for merging clusters (default: 0.97)')
    group.add_argument('--linkage-method', choices=LINKAGE_METHODS, default='single',
                       help='Hierarchical clustering linkage method (default: single)')


def add_resource_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('-t', '--threads', type=int, default=1, help='Number of threads (default: 1)')
    parser.add_argument('-m', '--memory', type=int, default=4,
                        help='Memory budget for graph construction in GB (default: 4)')
    parser.add_argument('--tmp-dir', help='Directory for temporary files (default: /tmp)')


def add_ggcat_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('Pangenome construction')
    group.add_argument('--ggcat-kmer-size', type=int, default=51,
                       help='k-mer size for the pangenome graph (default: 51)')
    group.add_argument('--min-kmer-count', type=int, default=1,
                       help='Minimum k-mer multiplicity (default: 1)')
    group.add_argument('--minimizer-length', type=int, help='Minimizer length')
    group.add_argument('--no-rc', action='store_true', help='Do not merge reverse complements')
    group.add_argument('--unitig-type', choices=sorted(UNITIG_TYPES), default='greedymatchtigs',
                       help='Type of unitigs to output (default: greedymatchtigs)')
    group.add_argument('--intermediate-compression', type=int,
                       help='Compression level of intermediate files')


def skani_params_from_args(args: argparse.Namespace) -> SkaniParams:
    return SkaniParams(
        kmer_subsampling_rate=args.kmer_subsampling_rate,
        marker_compression_factor=args.marker_compression_factor,
        rescue_small=args.rescue_small,
        clip_tails=args.clip_tails,
        median=args.median,
        adjust_ani=args.adjust_ani,
        min_aligned_frac=args.min_af,
    )


def linkage_params_from_args(args: argparse.Namespace) -> LinkageParams:
    return LinkageParams(method=args.linkage_method, similarity_threshold=args.ani_threshold)


def ggcat_params_from_args(args: argparse.Namespace) -> GGCATParams:
    return GGCATParams(
        kmer_size=args.ggcat_kmer_size,
        kmer_min_multiplicity=args.min_kmer_count,
        minimizer_length=args.minimizer_length,
        no_reverse_complement=args.no_rc,
        unitig_type=args.unitig_type,
        threads=args.threads,
        memory=args.memory,
        temp_dir_path=args.tmp_dir or "/tmp",
        intermediate_compression_level=args.intermediate_compression,
    )


def collect_inputs(args: argparse.Namespace) -> List[str]:
    """Combine positional inputs and the input list, dropping repeats.

    Raises:
        ValueError: If no inputs were given or an input fails the check
    """
    seq_files = list(args.seq_files)
    if args.input_list:
        seq_files.extend(read_input_list(args.input_list))

    unique = deduplicate(seq_files)
    if len(unique) < len(seq_files):
        logging.warning(f"Ignoring {len(seq_files) - len(unique)} repeated input files")
    if not unique:
        raise ValueError("No input sequence files given")

    if args.check_inputs:
        invalid = [path for path in unique if not check_fastx_file(path)]
        for path in invalid:
            logging.error(f"File {path} is not a valid fasta/fastq file")
        if invalid:
            raise ValueError(f"{len(invalid)} input files could not be parsed")

    logging.info(f"Read {len(unique)} input sequence files")
    return unique


def run_dereplicate(args: argparse.Namespace) -> None:
    seq_files = collect_inputs(args)

    external_clustering = None
    if args.external_clustering:
        external_clustering = external_labels_for(seq_files, read_external_clustering(args.external_clustering))

    initial_batches = read_input_list(args.initial_batches) if args.initial_batches else None

    params = DereplicateParams(
        batch_step=args.batch_step,
        batch_step_strategy=args.batch_step_strategy,
        max_iters=args.max_iters,
        temp_dir=args.tmp_dir or "/tmp",
        guided=args.guided,
        external_clustering=external_clustering,
        initial_batches=initial_batches,
        out_prefix=args.out_prefix or "",
        chunk_workers=args.chunk_workers,
        show_progress=args.progress,
    )

    builder = GGCATBuilder(ggcat_params_from_args(args))
    builder.ensure_initialized()
    estimator = SkaniEstimator(threads=args.threads, temp_dir=args.tmp_dir)

    dereplicator = Dereplicator(estimator, builder, params,
                                skani_params=skani_params_from_args(args),
                                linkage_params=linkage_params_from_args(args))
    clusters = dereplicator.dereplicate(seq_files)

    n_clusters = len({label for _, label in clusters})
    logging.info(f"Created {n_clusters} clusters")
    sys.stdout.write(format_assignments(clusters))


def run_dist(args: argparse.Namespace) -> None:
    seq_files = collect_inputs(args)
    estimator = SkaniEstimator(threads=args.threads, temp_dir=args.tmp_dir)
    results = ani_from_fastx_files(seq_files, estimator, skani_params_from_args(args))
    sys.stdout.write(format_similarities(results))


def run_cluster(args: argparse.Namespace) -> None:
    results = read_similarities(args.dist_file)
    logging.info(f"Read {len(results)} pairwise ANI values from {args.dist_file}")

    ids, condensed = similarities_to_condensed(results)
    groups = cluster_distances(condensed, len(ids), linkage_params_from_args(args))

    prefix = (args.out_prefix or "") + FINAL_PREFIX
    clusters = {}
    for seq, group in zip(ids, groups):
        clusters.setdefault(format_cluster_label(prefix, group), []).append(seq)

    assignment = relabel_singletons(ClusterAssignment(clusters))
    logging.info(f"Created {len(assignment)} clusters")
    sys.stdout.write(format_assignments(assignment.flatten()))


def run_build(args: argparse.Namespace) -> None:
    seq_files = collect_inputs(args)
    labels = external_labels_for(seq_files, read_external_clustering(args.external_clustering))

    if args.target:
        if args.target not in labels:
            raise ValueError(f"Target cluster {args.target} not found in {args.external_clustering}")
        # Every other sequence becomes a singleton, so only the target graph is built
        labels = [label if label == args.target else seq for seq, label in zip(seq_files, labels)]

    assignment = ClusterAssignment.from_sequences(seq_files, labels)
    builder = GGCATBuilder(ggcat_params_from_args(args))
    out_prefix = args.out_prefix or ""
    n_built = build_pangenome_representations(assignment.clusters, builder,
                                              graph_path_for=lambda label: out_prefix + label,
                                              show_progress=args.progress)
    logging.info(f"Built {n_built} pangenome graphs")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='panaani',
        description='panaani: Pangenome-aware dereplication of bacterial genomes into ANI clusters',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  panaani dereplicate genomes/*.fasta > clusters.tsv
  panaani dereplicate -l inputs.txt -b 100 --batch-step-strategy linear --guided
  panaani dist a.fasta b.fasta c.fasta > ani.tsv
  panaani cluster ani.tsv --ani-threshold 0.95
  panaani build -l inputs.txt --external-clustering clusters.tsv -o graphs/
        """
    )
    subparsers = parser.add_subparsers(dest='command')

    derep = subparsers.add_parser('dereplicate', help='Dereplicate genomes into ANI clusters')
    add_input_arguments(derep)
    derep.add_argument('-o', '--out-prefix', help='Prefix for the final pangenome graphs')
    add_resource_arguments(derep)
    group = derep.add_argument_group('Dereplication')
    group.add_argument('-b', '--batch-step', type=int, default=50,
                       help='Initial batch size and linear growth step (default: 50)')
    group.add_argument('--batch-step-strategy', default='double',
                       help='Batch size growth: linear or double (default: double)')
    group.add_argument('--initial-batches', help='File listing the cluster order of the first round')
    group.add_argument('--external-clustering', help='Initial clustering as sequence<TAB>cluster lines')
    group.add_argument('--max-iters', type=int, default=10,
                       help='Maximum number of batched rounds (default: 10)')
    group.add_argument('--guided', action='store_true',
                       help='Compose batches from a low resolution ANI clustering')
    group.add_argument('--chunk-workers', type=int, default=1,
                       help='Number of batches processed concurrently (default: 1)')
    add_skani_arguments(derep)
    add_linkage_arguments(derep)
    add_ggcat_arguments(derep)
    derep.add_argument('--progress', action='store_true', help='Show progress bars')
    derep.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    derep.set_defaults(func=run_dereplicate)

    dist = subparsers.add_parser('dist', help='Calculate ANI between sequence files')
    add_input_arguments(dist)
    dist.add_argument('-t', '--threads', type=int, default=1, help='Number of threads (default: 1)')
    dist.add_argument('--tmp-dir', help='Directory for temporary files')
    add_skani_arguments(dist)
    dist.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    dist.set_defaults(func=run_dist)

    cluster = subparsers.add_parser('cluster', help='Cluster ANI values written by panaani dist')
    cluster.add_argument('dist_file', help='Tab-separated id_a, id_b, ANI file')
    cluster.add_argument('-o', '--out-prefix', help='Prefix for cluster labels')
    add_linkage_arguments(cluster)
    cluster.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    cluster.set_defaults(func=run_cluster)

    build = subparsers.add_parser('build', help='Build pangenome graphs for existing clusters')
    add_input_arguments(build)
    build.add_argument('--external-clustering', required=True,
                       help='Clustering as sequence<TAB>cluster lines')
    build.add_argument('--target', help='Only build the graph of this cluster')
    build.add_argument('-o', '--out-prefix', help='Prefix for the pangenome graphs')
    add_resource_arguments(build)
    add_ggcat_arguments(build)
    build.add_argument('--progress', action='store_true', help='Show progress bars')
    build.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    build.set_defaults(func=run_build)

    return parser


def main(argv: List[str] = None):
    """Main entry point for the panaani CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)

    try:
        args.func(args)
        logging.debug("Done!")
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
