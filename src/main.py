# src/main.py — v2
"""CLI entry point — run, plan, evaluate commands.

Usage:
    frameagent run <project> --render-dir DIR --tools tools.json [options]
    frameagent plan [--target-minutes N]
    frameagent evaluate <project> --render-dir DIR [--prompt TEXT]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from frameagent.version import __version__

if TYPE_CHECKING:
    from frameagent.config.settings import Settings
    from frameagent.core.models import AgentProgress

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = _load_settings_for_cli(args.verbose)
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="frameagent",
        description=f"frameagent v{__version__} — Video generation agent",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Plan and execute a full agent run")
    p_run.add_argument("project", help="Project name")
    p_run.add_argument(
        "--render-dir", type=Path, required=True,
        help="Render directory for intermediate files and reports",
    )
    p_run.add_argument(
        "--project-root", type=Path, default=None,
        help="Project root (default: parent of the render directory)",
    )
    p_run.add_argument(
        "--tools", type=Path, required=True,
        help="JSON file mapping tool names to classes or commands",
    )
    _add_brief_arguments(p_run)
    p_run.add_argument(
        "--mode", choices=["full", "resume", "resume_from_step"], default="full",
        help="Run mode (default: full)",
    )
    p_run.add_argument(
        "--from-step", default=None,
        help="Step id to start from (resume modes)",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- plan ---
    p_plan = subparsers.add_parser("plan", help="Print the validated plan as JSON")
    p_plan.add_argument(
        "--target-minutes", type=int, default=1,
        help="Target video length in minutes (default: 1)",
    )
    p_plan.set_defaults(func=_cmd_plan)

    # --- evaluate ---
    p_eval = subparsers.add_parser(
        "evaluate", help="Check a render directory without running tools",
    )
    p_eval.add_argument("project", help="Project name")
    p_eval.add_argument(
        "--render-dir", type=Path, required=True, help="Render directory to inspect",
    )
    p_eval.add_argument("--prompt", default="", help="Creative brief for the alignment check")
    p_eval.set_defaults(func=_cmd_evaluate)

    return parser


def _add_brief_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--prompt", required=True, help="Creative brief text")
    parser.add_argument(
        "--target-minutes", type=int, default=1,
        help="Target video length in minutes (default: 1)",
    )
    parser.add_argument(
        "--temporal-expansion", type=int, default=2,
        help="Temporal expansion factor (default: 2)",
    )
    parser.add_argument("--relevance", type=float, default=100.0, help="Weight 0-100")
    parser.add_argument("--sentiment", type=float, default=25.0, help="Weight 0-100")
    parser.add_argument("--novelty", type=float, default=25.0, help="Weight 0-100")
    parser.add_argument("--energy", type=float, default=25.0, help="Weight 0-100")


async def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute an agent run."""
    from frameagent.config.tools import CANONICAL_ORDER
    from frameagent.core.models import CreativeBrief, RunMode, RunRequest
    from frameagent.llm.client_factory import create_llm_from_settings
    from frameagent.pipeline.evaluator import Evaluator
    from frameagent.pipeline.orchestrator import PipelineOrchestrator
    from frameagent.pipeline.planner import PlanProposer
    from frameagent.pipeline.registry import ToolRegistry

    if not args.tools.is_file():
        logger.error("Tool configuration not found: %s", args.tools)
        return 1

    registry = ToolRegistry.from_file(args.tools, default_timeout_s=settings.tool_timeout_seconds)
    missing = registry.missing(CANONICAL_ORDER)
    if missing:
        logger.error("Tool configuration lacks: %s", ", ".join(missing))
        return 1

    render_dir: Path = args.render_dir
    request = RunRequest(
        project_name=args.project,
        project_root=args.project_root or render_dir.parent,
        render_directory=render_dir,
        brief=CreativeBrief(
            prompt=args.prompt,
            relevance=args.relevance,
            sentiment=args.sentiment,
            novelty=args.novelty,
            energy=args.energy,
            temporal_expansion=args.temporal_expansion,
        ),
        target_minutes=args.target_minutes,
        run_mode=RunMode(args.mode),
        from_step_id=args.from_step,
    )

    llm = create_llm_from_settings(settings)
    orchestrator = PipelineOrchestrator(
        registry=registry,
        planner=PlanProposer(llm=llm, max_tokens=settings.llm_max_tokens),
        evaluator=Evaluator(
            llm=llm,
            min_coverage=settings.alignment_min_coverage,
            min_model_score=settings.alignment_min_model_score,
        ),
        settings=settings,
    )

    def _on_progress(progress: AgentProgress) -> None:
        print(progress.log_message, file=sys.stderr)

    result = await orchestrator.run(request, on_progress=_on_progress)

    if result.success:
        print("\nRun complete:")
        print(f"  Output:  {result.output_path}")
    else:
        print("\nRun failed:")
        for err in result.errors:
            print(f"  - {err}")
    print(f"  Report:  {result.report_path}")
    return 0 if result.success else 1


async def _cmd_plan(args: argparse.Namespace, settings: Settings) -> int:
    """Print the validated plan for a request."""
    from frameagent.llm.client_factory import create_llm_from_settings
    from frameagent.core.models import RunRequest
    from frameagent.pipeline.plan_validator import PlanValidator
    from frameagent.pipeline.planner import PlanProposer

    request = RunRequest(
        project_name="plan",
        project_root=Path.cwd(),
        render_directory=Path.cwd(),
        target_minutes=args.target_minutes,
    )
    proposer = PlanProposer(
        llm=create_llm_from_settings(settings), max_tokens=settings.llm_max_tokens,
    )
    plan = PlanValidator().validate(await proposer.propose(request))
    print(plan.model_dump_json(indent=2))
    return 0


async def _cmd_evaluate(args: argparse.Namespace, settings: Settings) -> int:
    """Print per-step, gate and alignment outcomes for a render directory."""
    from frameagent.config.tools import CANONICAL_ORDER
    from frameagent.core.models import CreativeBrief, RunRequest
    from frameagent.llm.client_factory import create_llm_from_settings
    from frameagent.pipeline.evaluator import Evaluator

    render_dir: Path = args.render_dir
    if not render_dir.is_dir():
        logger.error("Not a directory: %s", render_dir)
        return 1

    request = RunRequest(
        project_name=args.project,
        project_root=render_dir.parent,
        render_directory=render_dir,
        brief=CreativeBrief(prompt=args.prompt),
    )
    evaluator = Evaluator(
        llm=create_llm_from_settings(settings),
        min_coverage=settings.alignment_min_coverage,
        min_model_score=settings.alignment_min_model_score,
    )

    print(f"\nEvaluation of {render_dir}:")
    for tool in CANONICAL_ORDER:
        outcome = evaluator.evaluate_step(tool, request)
        mark = "✓" if outcome.passed else "✗"
        suffix = f"  ({outcome.reason})" if outcome.reason else ""
        print(f"  {mark} {tool:24s}{suffix}")

    gate = evaluator.evaluate_gate(request)
    print(f"  Gate:       {'pass' if gate.passed else 'fail'}")

    if args.prompt:
        alignment = await evaluator.evaluate_alignment(request)
        print(f"  Alignment:  {'pass' if alignment.passed else 'fail'} "
              f"(coverage={alignment.metrics.get('coverage')}, "
              f"model_score={alignment.metrics.get('model_score')})")

    return 0 if gate.passed else 1


def _load_settings_for_cli(verbose: bool) -> Settings:
    """Load settings and configure logging from them."""
    from frameagent.config.settings import load_settings
    from frameagent.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return settings


if __name__ == "__main__":
    sys.exit(main())
