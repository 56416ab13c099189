"""Tests for the mapmerge.cli module."""

from unittest.mock import patch

from typer.testing import CliRunner

from mapmerge.cli import app
from mapmerge.errors import PyramidError
from mapmerge.pipeline import PipelineSummary
from mapmerge.tilers.compositor import MergeSummary

from conftest import RED


runner = CliRunner()


class TestEnvOption:
    """Tests for the --env option shared by all commands."""

    @patch('mapmerge.cli.run_pipeline', return_value=PipelineSummary())
    @patch('mapmerge.config.change_env')
    def test_changes_env_when_not_default(self, mock_change_env, mock_run):
        """run should change environment when env is not DEFAULT."""
        result = runner.invoke(app, ["run", "--env", "production"])

        mock_change_env.assert_called_once_with("production")
        assert result.exit_code == 0
        assert "production" in result.output

    @patch('mapmerge.cli.run_pipeline', return_value=PipelineSummary())
    @patch('mapmerge.config.change_env')
    def test_skips_env_change_for_default(self, mock_change_env, mock_run):
        result = runner.invoke(app, ["run"])

        mock_change_env.assert_not_called()
        assert result.exit_code == 0
        assert "Pipeline completed successfully." in result.output


class TestExitCodes:
    """Tests for mapping outcomes to exit codes."""

    def test_missing_base_path_is_fatal(self, temp_dir):
        result = runner.invoke(app, ["merge", "--base-path", str(temp_dir / "nope"),
                                     "--output-dir", str(temp_dir / "out")])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_invalid_workers(self):
        result = runner.invoke(app, ["merge", "--workers", "0"])
        assert result.exit_code == 1

    @patch('mapmerge.cli.run_pipeline',
           return_value=PipelineSummary(merge=MergeSummary(total=2, saved=1, failed=1)))
    def test_partial_failure(self, mock_run):
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 2
        assert "Failed: 1" in result.output

    @patch('mapmerge.cli.generate_pyramid', side_effect=PyramidError("No base tiles"))
    def test_pyramid_without_index(self, mock_generate, temp_dir):
        result = runner.invoke(app, ["pyramid", str(temp_dir)])
        assert result.exit_code == 1
        assert "No base tiles" in result.output


class TestMergeCommand:
    """Tests for the merge command on real files."""

    def test_merge_writes_chunk(self, map_tree, temp_dir):
        base = map_tree({"map0": {(512, 0): RED}}, size=1024)
        out = temp_dir / "merged"
        result = runner.invoke(app, ["merge", "--base-path", str(base),
                                     "--output-dir", str(out), "--tile-size", "1024",
                                     "--base-x=-512", "--base-z=0"])
        assert result.exit_code == 0, result.output
        assert [p.name for p in out.iterdir()] == ["chunk_1_0_x512_z0.png"]
        assert "Saved: 1" in result.output
