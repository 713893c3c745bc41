"""Tests for run_pipeline.py commands, flags and exit codes."""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from run_pipeline import (
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_OK,
    create_parser,
    main,
    parse_strategies,
)
from workflows.config import ConfigurationError, PipelineConfig
from workflows.pipeline import PipelineStats


def mock_pipeline(stats=None, **methods):
    """DiscoveryPipeline stand-in usable as an async context manager."""
    pipeline = MagicMock()
    pipeline.run_full = AsyncMock(return_value=stats or PipelineStats(command="full"))
    pipeline.run_discover = AsyncMock(return_value=stats or PipelineStats(command="discover"))
    pipeline.run_snapshot = AsyncMock(return_value=stats or PipelineStats(command="snapshot"))
    for name, value in methods.items():
        setattr(pipeline, name, value)
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = pipeline
    return factory, pipeline


class TestParser:
    """Test CLI argument parsing."""

    def test_full_flags(self):
        args = create_parser().parse_args([
            "full", "--strategies", "category_search,hacker_news", "--limit", "20",
            "--dry-run", "--output", "run.json", "--db-path", "x.db", "-v",
        ])
        assert args.command == "full"
        assert args.strategies == "category_search,hacker_news"
        assert args.limit == 20
        assert args.dry_run is True
        assert args.output == "run.json"
        assert args.db_path == "x.db"
        assert args.verbose is True

    def test_full_defaults(self):
        args = create_parser().parse_args(["full"])
        assert args.strategies is None
        assert args.limit is None
        assert args.dry_run is False

    @pytest.mark.parametrize("value", ["-5", "0", "ten"])
    def test_limit_must_be_positive(self, value, capsys):
        with pytest.raises(SystemExit) as exc:
            create_parser().parse_args(["full", "--limit", value])
        assert exc.value.code == 2
        assert "positive integer" in capsys.readouterr().err

    def test_daily_job_commands(self):
        parser = create_parser()
        assert parser.parse_args(["snapshot", "--dry-run"]).dry_run is True
        assert parser.parse_args(["tool-scan"]).command == "tool-scan"
        assert parser.parse_args(["stats", "--db-path", "d.db"]).db_path == "d.db"


class TestParseStrategies:
    def test_none_means_all(self):
        assert parse_strategies(None) is None
        assert parse_strategies("") is None

    def test_splits_and_strips(self):
        assert parse_strategies(" gharchive , hacker_news ") == ["gharchive", "hacker_news"]

    def test_unknown_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown strategies: bogus"):
            parse_strategies("gharchive,bogus")


class TestExitCodes:
    """Test main() exit codes."""

    @pytest.mark.asyncio
    async def test_no_command_prints_help(self, capsys):
        assert await main([]) == EXIT_FAILURE
        assert "usage" in capsys.readouterr().out.lower()

    @pytest.mark.asyncio
    async def test_missing_token_is_configuration_error(self, capsys):
        factory, _ = mock_pipeline()
        with patch("run_pipeline.PipelineConfig.from_env", return_value=PipelineConfig()), \
                patch("run_pipeline.DiscoveryPipeline", factory):
            code = await main(["full"])

        assert code == EXIT_CONFIG
        assert "GITHUB_TOKEN" in capsys.readouterr().err
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_strategy_is_configuration_error(self):
        factory, _ = mock_pipeline()
        with patch("run_pipeline.PipelineConfig.from_env", return_value=PipelineConfig(github_token="t")), \
                patch("run_pipeline.DiscoveryPipeline", factory):
            code = await main(["discover", "--strategies", "trending_page"])

        assert code == EXIT_CONFIG
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_exits_one(self):
        factory, _ = mock_pipeline(run_snapshot=AsyncMock(side_effect=RuntimeError("disk full")))
        with patch("run_pipeline.PipelineConfig.from_env", return_value=PipelineConfig(github_token="t")), \
                patch("run_pipeline.DiscoveryPipeline", factory):
            code = await main(["snapshot"])

        assert code == EXIT_FAILURE


class TestCommands:
    """Test command handlers with a stubbed pipeline."""

    @pytest.mark.asyncio
    async def test_full_passes_flags_and_writes_output(self, tmp_path):
        output = tmp_path / "run.json"
        stats = PipelineStats(command="full", dry_run=True, repos_scored=3)
        stats.complete()
        factory, pipeline = mock_pipeline(stats)

        with patch("run_pipeline.PipelineConfig.from_env", return_value=PipelineConfig(github_token="t")), \
                patch("run_pipeline.DiscoveryPipeline", factory):
            code = await main([
                "full", "--strategies", "hacker_news", "--limit", "5", "--dry-run",
                "--db-path", str(tmp_path / "cli.db"), "--output", str(output),
            ])

        assert code == EXIT_OK
        pipeline.run_full.assert_awaited_once_with(strategies=["hacker_news"], limit=5, dry_run=True)
        config = factory.call_args.args[0]
        assert config.db_path == str(tmp_path / "cli.db")
        saved = json.loads(output.read_text())
        assert saved["repositories"]["scored"] == 3
        assert saved["dry_run"] is True

    @pytest.mark.asyncio
    async def test_stats_needs_no_token(self, tmp_path, capsys):
        with patch("run_pipeline.PipelineConfig.from_env", return_value=PipelineConfig()):
            code = await main(["stats", "--db-path", str(tmp_path / "stats.db")])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "Repositories: 0 (0 absent)" in out
        assert "(none)" in out
