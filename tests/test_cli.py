"""
Tests for the command-line interface.
"""

from unittest.mock import patch

import pytest

from panaani.cli import main as cli_main, setup_logging
from panaani.dereplicate import DereplicateParams


class TestMainCLI:
    """Test suite for the panaani CLI."""

    def test_setup_logging_verbose(self):
        """Test logging setup with verbose mode."""
        with patch('panaani.cli.logging.basicConfig') as mock_config:
            setup_logging(verbose=True)
            mock_config.assert_called_once()
            args, kwargs = mock_config.call_args
            assert kwargs['level'] == 10  # logging.DEBUG

    def test_setup_logging_normal(self):
        """Test logging setup with normal mode."""
        with patch('panaani.cli.logging.basicConfig') as mock_config:
            setup_logging(verbose=False)
            mock_config.assert_called_once()
            args, kwargs = mock_config.call_args
            assert kwargs['level'] == 20  # logging.INFO

    def test_cli_help_message(self):
        with pytest.raises(SystemExit) as exc_info:
            cli_main(['--help'])
        assert exc_info.value.code == 0

    def test_cli_without_command(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli_main([])
        assert exc_info.value.code == 1
        assert 'dereplicate' in capsys.readouterr().out

    def test_cli_missing_dist_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            cli_main(['cluster', str(tmp_path / 'missing.tsv')])
        assert exc_info.value.code == 1


class TestClusterCommand:
    """Tests for clustering precomputed ANI values."""

    def test_cluster(self, tmp_path, capsys):
        dist_file = tmp_path / "ani.tsv"
        dist_file.write_text("a.fa\tb.fa\t0.99\na.fa\tc.fa\t0\nb.fa\tc.fa\t0\n")

        cli_main(['cluster', str(dist_file), '--ani-threshold', '0.97'])

        lines = capsys.readouterr().out.splitlines()
        assignment = dict(line.split('\t') for line in lines)
        assert assignment["c.fa"] == "c.fa"
        assert assignment["a.fa"] == assignment["b.fa"]
        assert assignment["a.fa"].startswith("panANI-")

    def test_cluster_out_prefix(self, tmp_path, capsys):
        dist_file = tmp_path / "ani.tsv"
        dist_file.write_text("a.fa\tb.fa\t0.99\n")

        cli_main(['cluster', str(dist_file), '-o', 'run1_'])

        lines = capsys.readouterr().out.splitlines()
        assert lines == ["a.fa\trun1_panANI-0.dbg.fasta", "b.fa\trun1_panANI-0.dbg.fasta"]


class TestDereplicateCommand:
    """Tests for the dereplicate subcommand wiring."""

    def test_dereplicate(self, tmp_path, capsys):
        clusters = [("a.fa", "panANI-0.dbg.fasta"), ("b.fa", "panANI-0.dbg.fasta"), ("c.fa", "c.fa")]

        with patch('panaani.cli.GGCATBuilder') as mock_builder, \
             patch('panaani.cli.SkaniEstimator') as mock_estimator, \
             patch('panaani.cli.Dereplicator') as mock_dereplicator:
            mock_dereplicator.return_value.dereplicate.return_value = clusters

            cli_main(['dereplicate', 'a.fa', 'b.fa', 'c.fa', 'a.fa',
                      '-b', '2', '--batch-step-strategy', 'linear', '--guided',
                      '--tmp-dir', str(tmp_path), '-t', '4'])

            mock_builder.return_value.ensure_initialized.assert_called_once()
            mock_estimator.assert_called_once_with(threads=4, temp_dir=str(tmp_path))

            args, kwargs = mock_dereplicator.call_args
            params = args[2]
            assert isinstance(params, DereplicateParams)
            assert params.batch_step == 2
            assert params.batch_step_strategy == "linear"
            assert params.guided
            assert params.temp_dir == str(tmp_path)
            assert kwargs['skani_params'].min_aligned_frac == 0.15
            assert kwargs['linkage_params'].similarity_threshold == 0.97

            # Repeated inputs are dropped before dereplication
            mock_dereplicator.return_value.dereplicate.assert_called_once_with(["a.fa", "b.fa", "c.fa"])

        out = capsys.readouterr().out
        assert out == "a.fa\tpanANI-0.dbg.fasta\nb.fa\tpanANI-0.dbg.fasta\nc.fa\tc.fa\n"

    def test_dereplicate_external_clustering(self, tmp_path):
        clustering = tmp_path / "clusters.tsv"
        clustering.write_text("a.fa\tx\nb.fa\tx\nc.fa\ty\n")

        with patch('panaani.cli.GGCATBuilder'), \
             patch('panaani.cli.SkaniEstimator'), \
             patch('panaani.cli.Dereplicator') as mock_dereplicator:
            mock_dereplicator.return_value.dereplicate.return_value = []

            cli_main(['dereplicate', 'c.fa', 'a.fa', 'b.fa',
                      '--external-clustering', str(clustering)])

            params = mock_dereplicator.call_args[0][2]
            assert params.external_clustering == ["y", "x", "x"]

    def test_dereplicate_failure_exits(self):
        with patch('panaani.cli.GGCATBuilder') as mock_builder, \
             patch('panaani.cli.SkaniEstimator'):
            mock_builder.return_value.ensure_initialized.side_effect = RuntimeError("ggcat command not found")
            with pytest.raises(SystemExit) as exc_info:
                cli_main(['dereplicate', 'a.fa', 'b.fa'])
            assert exc_info.value.code == 1


class TestBuildCommand:
    """Tests for the build subcommand."""

    def test_build_target_only(self, tmp_path):
        clustering = tmp_path / "clusters.tsv"
        clustering.write_text("a.fa\tx\nb.fa\tx\nc.fa\ty\nd.fa\ty\n")

        with patch('panaani.cli.GGCATBuilder') as mock_builder:
            cli_main(['build', 'a.fa', 'b.fa', 'c.fa', 'd.fa',
                      '--external-clustering', str(clustering), '--target', 'y', '-o', 'graphs/'])

            builder = mock_builder.return_value
            builder.build.assert_called_once_with(["c.fa", "d.fa"], "graphs/y")
