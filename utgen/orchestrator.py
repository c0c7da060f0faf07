"""Generate-run-fix loop over every exported unit of a source tree."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from .ai.base import AIClient, ConversationContext
from .errors import CollaboratorTimeout, ConfigError, UnitFatalError
from .language.base import AnalyzedFile, ExportedUnit, LanguageService, TestRunResult
from .ui.console import Reporter

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


class UnitState(Enum):
    START = "start"
    GENERATING = "generating"
    RUNNING = "running"
    FEEDBACK = "feedback"
    PASSED = "passed"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"


TERMINAL_STATES = frozenset({UnitState.PASSED, UnitState.EXHAUSTED, UnitState.FATAL})


@dataclass
class RunSettings:
    test_dir: Path
    root_dir: Path = Path("./")
    max_tries: int = 5
    sleep_ms: int = 1000
    export: bool = False
    call_timeout: Optional[float] = 600.0
    feedback_on_final_attempt: bool = True
    keep_going: bool = False

    def __post_init__(self) -> None:
        self.test_dir = Path(self.test_dir)
        self.root_dir = Path(self.root_dir)
        if isinstance(self.max_tries, bool) or not isinstance(self.max_tries, int):
            raise ConfigError(f"max_tries must be an integer, got {self.max_tries!r}")
        if self.max_tries < 1:
            raise ConfigError(f"max_tries must be at least 1, got {self.max_tries}")
        if self.sleep_ms < 0:
            raise ConfigError(f"sleep must not be negative, got {self.sleep_ms}")
        if self.call_timeout is not None and self.call_timeout <= 0:
            self.call_timeout = None


@dataclass
class RetryState:
    max_attempts: int
    attempt_count: int = 0
    passed: bool = False

    @property
    def on_final_attempt(self) -> bool:
        return self.attempt_count >= self.max_attempts


@dataclass
class UnitOutcome:
    file_path: Path
    unit_name: str
    state: UnitState
    attempts: int
    test_file: Path
    error: Optional[BaseException] = None
    propagates: bool = False


@dataclass
class RunSummary:
    outcomes: List[UnitOutcome] = field(default_factory=list)
    files_processed: int = 0

    def with_state(self, state: UnitState) -> List[UnitOutcome]:
        return [outcome for outcome in self.outcomes if outcome.state is state]

    @property
    def passed(self) -> List[UnitOutcome]:
        return self.with_state(UnitState.PASSED)

    @property
    def exhausted(self) -> List[UnitOutcome]:
        return self.with_state(UnitState.EXHAUSTED)

    @property
    def fatal(self) -> List[UnitOutcome]:
        return self.with_state(UnitState.FATAL)


class ConversationScope:
    """Owns one conversation id and guarantees it is stopped exactly once."""

    def __init__(self, orchestrator: "Orchestrator"):
        self._orchestrator = orchestrator
        self.conversation_id: Optional[str] = None

    async def open(self, context: ConversationContext) -> str:
        self.conversation_id = await self._orchestrator._call(
            "start conversation", self._orchestrator.ai.start_conversation(context)
        )
        return self.conversation_id

    async def close(self) -> None:
        if self.conversation_id is None:
            return
        conversation_id, self.conversation_id = self.conversation_id, None
        await self._orchestrator._call(
            "stop conversation", self._orchestrator.ai.stop_conversation(conversation_id)
        )

    async def __aenter__(self) -> "ConversationScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.conversation_id is None:
            return
        try:
            await self.close()
        except Exception as close_error:
            self._orchestrator.reporter.warn(
                f"Failed to stop conversation: {close_error}"
            )


@dataclass
class UnitRun:
    analyzed: AnalyzedFile
    unit: ExportedUnit
    retry: RetryState
    test_file: Path
    scope: ConversationScope
    last_result: Optional[TestRunResult] = None
    error: Optional[BaseException] = None
    propagate: bool = False


class Orchestrator:
    def __init__(
        self,
        ai: AIClient,
        language: LanguageService,
        settings: RunSettings,
        reporter: Optional[Reporter] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.ai = ai
        self.language = language
        self.settings = settings
        self.reporter = reporter or Reporter()
        self._sleep = sleep or asyncio.sleep
        self._handlers: Dict[UnitState, Callable[[UnitRun], Awaitable[UnitState]]] = {
            UnitState.START: self._on_start,
            UnitState.GENERATING: self._on_generating,
            UnitState.RUNNING: self._on_running,
            UnitState.FEEDBACK: self._on_feedback,
        }

    async def run(self) -> RunSummary:
        summary = RunSummary()
        try:
            files = self.language.discover_files(self.settings.test_dir)
            self.reporter.info(
                f"Found {len(files)} source file(s) in {self.settings.test_dir}"
            )
            for file_path in files:
                await self.process_file(file_path, summary)
        finally:
            self.language.cleanup()
        self.reporter.info("Finished processing all functions")
        return summary

    async def process_file(self, file_path: Path, summary: RunSummary) -> None:
        if self.settings.export:
            self.reporter.info(f"Exporting all declarations in file: {file_path}")
            changed = self.language.export_all_declarations(file_path)
            self.reporter.debug(f"Exported {changed} declaration(s) in {file_path}")

        analyzed = self.language.analyze_source_file(file_path)
        summary.files_processed += 1
        self.reporter.info(
            f"Found {len(analyzed.exported_units)} functions in file: {file_path}"
        )
        for name in analyzed.skipped_units:
            self.reporter.warn(f"Skipping non-exported function: {name} in {file_path}")

        for unit in analyzed.exported_units:
            outcome = await self.process_unit(analyzed, unit)
            summary.outcomes.append(outcome)
            if outcome.state is UnitState.FATAL and self._should_propagate(outcome):
                raise UnitFatalError(unit.name, str(file_path), outcome.error) from outcome.error

    async def process_unit(self, analyzed: AnalyzedFile, unit: ExportedUnit) -> UnitOutcome:
        self.reporter.info(f"Processing function: {unit.name}")
        test_file = self.language.test_file_path(analyzed.path, unit.name)
        async with ConversationScope(self) as scope:
            run = UnitRun(
                analyzed=analyzed,
                unit=unit,
                retry=RetryState(max_attempts=self.settings.max_tries),
                test_file=test_file,
                scope=scope,
            )
            state = UnitState.START
            while state not in TERMINAL_STATES:
                state = await self._dispatch(state, run)
        return UnitOutcome(
            file_path=analyzed.path,
            unit_name=unit.name,
            state=state,
            attempts=min(run.retry.attempt_count, run.retry.max_attempts),
            test_file=test_file,
            error=run.error,
            propagates=run.propagate,
        )

    # ===== State handlers =====

    async def _dispatch(self, state: UnitState, run: UnitRun) -> UnitState:
        handler = self._handlers[state]
        return await handler(run)

    async def _on_start(self, run: UnitRun) -> UnitState:
        try:
            await run.scope.open(self._conversation_context(run))
        except Exception as exc:
            self.reporter.error(
                f"Failed to start conversation for function: {run.unit.name}: {exc}"
            )
            return self._fatal(run, exc, propagate=True)
        return UnitState.GENERATING

    async def _on_generating(self, run: UnitRun) -> UnitState:
        retry = run.retry
        retry.attempt_count += 1
        if retry.attempt_count > retry.max_attempts:
            self.reporter.error(
                f"Exceeded maximum tries ({retry.max_attempts}) for function: {run.unit.name}"
            )
            await self._release(run)
            return UnitState.EXHAUSTED

        self.reporter.info(
            f"Processing function: {run.unit.name}; "
            f"Try #{retry.attempt_count} of {retry.max_attempts}"
        )
        if retry.attempt_count > 1:
            return UnitState.RUNNING
        try:
            blocks = await self._call(
                "generate initial tests",
                self.ai.generate_initial_tests(run.scope.conversation_id),
            )
            self.language.write_candidate(run.test_file, blocks)
        except Exception as exc:
            self.reporter.error(
                f"Failed to generate initial tests for function: {run.unit.name}: {exc}"
            )
            await self._pause()
            return self._fatal(run, exc, propagate=False)
        self.reporter.debug(f"Wrote initial tests to {run.test_file}")
        return UnitState.RUNNING

    async def _on_running(self, run: UnitRun) -> UnitState:
        try:
            result = await self._call(
                "run tests",
                self.language.run_tests(self.settings.root_dir, run.test_file),
            )
        except Exception as exc:
            self.reporter.error(f"Error processing function {run.unit.name}: {exc}")
            await self._pause()
            return self._fatal(run, exc, propagate=False)

        run.last_result = result
        if result.success:
            self.reporter.success("All tests passed")
            run.retry.passed = True
            await self._pause()
            await self._release(run)
            return UnitState.PASSED

        self.reporter.error("Tests failed")
        if run.retry.on_final_attempt and not self.settings.feedback_on_final_attempt:
            self.reporter.error(
                f"Exceeded maximum tries ({run.retry.max_attempts}) "
                f"for function: {run.unit.name}"
            )
            await self._pause()
            await self._release(run)
            return UnitState.EXHAUSTED
        return UnitState.FEEDBACK

    async def _on_feedback(self, run: UnitRun) -> UnitState:
        try:
            blocks = await self._call(
                "provide feedback",
                self.ai.provide_feedback(
                    run.scope.conversation_id, run.last_result.raw_results
                ),
            )
            self.language.write_candidate(run.test_file, blocks)
        except Exception as exc:
            self.reporter.error(f"Error processing function {run.unit.name}: {exc}")
            return self._fatal(run, exc, propagate=False)
        finally:
            run.last_result = None
            await self._pause()
        self.reporter.debug(f"Wrote revised tests to {run.test_file}")
        return UnitState.GENERATING

    # ===== Helpers =====

    def _fatal(self, run: UnitRun, exc: BaseException, propagate: bool) -> UnitState:
        run.error = exc
        run.propagate = propagate
        return UnitState.FATAL

    def _should_propagate(self, outcome: UnitOutcome) -> bool:
        return outcome.propagates and not self.settings.keep_going

    async def _release(self, run: UnitRun) -> None:
        try:
            await run.scope.close()
        except Exception as exc:
            self.reporter.warn(f"Failed to stop conversation for {run.unit.name}: {exc}")

    async def _pause(self) -> None:
        await self._sleep(self.settings.sleep_ms / 1000)

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        timeout = self.settings.call_timeout
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise CollaboratorTimeout(operation, timeout) from exc

    def _conversation_context(self, run: UnitRun) -> ConversationContext:
        unit = run.unit
        return ConversationContext(
            file_location=str(run.analyzed.path),
            import_path=self.language.import_path(run.analyzed.path),
            unit_name=unit.name,
            unit_code=unit.source_text,
            referenced_types="\n\n".join(t.source_text for t in unit.referenced_types),
            import_context="\n".join(unit.import_context),
            test_framework=self.language.test_framework,
            fence_label=self.language.fence_label,
            fence_labels=self.language.fence_labels,
        )
