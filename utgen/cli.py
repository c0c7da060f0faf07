from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Type

from .ai import PROVIDERS, AIClient, AISettings, LLMCallLog
from .config import API_KEY, Config
from .errors import ConfigError, UtgenError
from .language.base import LanguageService
from .language.typescript import TypeScript
from .orchestrator import Orchestrator, RunSettings, RunSummary
from .ui.console import Reporter

LANGUAGES: Dict[str, Type[LanguageService]] = {
    TypeScript.name: TypeScript,
}

DEFAULT_LLM_LOG_PATH = "./utgen_llm_calls.jsonl"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="utgen",
        description="Generate unit tests for exported functions with AI guidance",
    )
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Generate tests for every file under testDir")
    run.add_argument("testDir", help="Directory (or file) to generate tests for")
    run.add_argument("--maxTries", type=int, default=5, help="Maximum number of tries")
    run.add_argument(
        "--model",
        default=None,
        help="Model to use (default depends on --ai)",
    )
    run.add_argument(
        "--ai",
        default="claude",
        help="AI to use (chatGPT or claude)",
    )
    run.add_argument("--rootDir", default="./", help="Root directory")
    run.add_argument("--language", default="typescript", help="Coding language")
    run.add_argument(
        "--sleep",
        type=int,
        default=1000,
        help="Sleep time between api calls (ms)",
    )
    run.add_argument(
        "--export",
        action="store_true",
        help="Modify the source file to export all top level declarations",
    )
    run.add_argument(
        "--timeout",
        type=float,
        default=600.0,
        help="Timeout in seconds for each provider call or test run (0 disables)",
    )
    run.add_argument(
        "--run-timeout",
        type=float,
        default=None,
        help="Timeout in seconds for the whole run",
    )
    run.add_argument(
        "--no-final-feedback",
        action="store_true",
        help="Do not ask for revised tests after the last failing attempt",
    )
    run.add_argument(
        "--keep-going",
        action="store_true",
        help="Continue with the next function when a conversation cannot be started",
    )
    run.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug diagnostics",
    )
    run.add_argument(
        "--llm-log",
        action="store_true",
        help="Write full LLM request/response logs to a JSONL file",
    )
    run.add_argument(
        "--llm-log-path",
        default=None,
        help=f"Path for LLM logs (default: {DEFAULT_LLM_LOG_PATH})",
    )
    return parser


def build_ai_client(
    provider: str,
    api_key: str,
    model: Optional[str] = None,
    llm_log: Optional[LLMCallLog] = None,
) -> AIClient:
    client_cls = PROVIDERS.get(provider.lower())
    if client_cls is None:
        raise ConfigError(
            f"Invalid AI '{provider}', please use one of: " + ", ".join(sorted(PROVIDERS))
        )
    settings = AISettings(api_key=api_key, model=model or client_cls.default_model)
    return client_cls(settings, llm_log=llm_log)


def build_language(name: str) -> LanguageService:
    language_cls = LANGUAGES.get(name.lower())
    if language_cls is None:
        raise ConfigError(
            f"Unsupported language '{name}', available: " + ", ".join(sorted(LANGUAGES))
        )
    return language_cls()


def build_orchestrator(args: argparse.Namespace, reporter: Reporter) -> Orchestrator:
    config = Config()
    config.fetch_config()
    api_key = config.value(API_KEY)

    llm_log = None
    if args.llm_log or args.llm_log_path:
        llm_log = LLMCallLog(Path(args.llm_log_path or DEFAULT_LLM_LOG_PATH))

    settings = RunSettings(
        test_dir=Path(args.testDir),
        root_dir=Path(args.rootDir),
        max_tries=args.maxTries,
        sleep_ms=args.sleep,
        export=args.export,
        call_timeout=args.timeout,
        feedback_on_final_attempt=not args.no_final_feedback,
        keep_going=args.keep_going,
    )
    ai = build_ai_client(args.ai, api_key, model=args.model, llm_log=llm_log)
    language = build_language(args.language)
    reporter.debug(f"Using {ai.provider_name} ({ai.model}) with {language.name}")
    return Orchestrator(ai, language, settings, reporter=reporter)


async def run_command(orchestrator: Orchestrator, run_timeout: Optional[float] = None) -> RunSummary:
    if run_timeout:
        return await asyncio.wait_for(orchestrator.run(), run_timeout)
    return await orchestrator.run()


def render_summary(summary: RunSummary, reporter: Reporter) -> None:
    rows: List[List[str]] = []
    for outcome in summary.outcomes:
        rows.append(
            [
                str(outcome.file_path),
                outcome.unit_name,
                outcome.state.value,
                str(outcome.attempts),
            ]
        )
    if rows:
        reporter.table("Summary", ["File", "Function", "Result", "Attempts"], rows)
    reporter.info(
        f"{len(summary.passed)} passed, {len(summary.exhausted)} exhausted, "
        f"{len(summary.fatal)} failed"
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "run":
        parser.print_help()
        return 1

    reporter = Reporter(verbose=args.verbose)
    try:
        orchestrator = build_orchestrator(args, reporter)
        summary = asyncio.run(run_command(orchestrator, args.run_timeout))
    except KeyboardInterrupt:
        reporter.info("\nGracefully shutting down from SIGINT (Ctrl+C)")
        return 0
    except asyncio.TimeoutError:
        reporter.error(f"Error running command: run exceeded {args.run_timeout:g}s")
        return 1
    except UtgenError as exc:
        reporter.error(f"Error running command: {exc}")
        return 1
    except Exception as exc:
        reporter.error(f"Error running command: {exc!r}")
        return 1
    render_summary(summary, reporter)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
