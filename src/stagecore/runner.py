"""
Stage runner - execute named units of test work under a skip policy.

A test is a sequence of ``run_stage`` calls. Cleanup is registered up front
with ``defer_stage`` and runs when the runner's scope exits, whether the
stages before it passed, failed, or raised:

    with StageRunner("cloud-sql-mysql") as runner:
        runner.run_stage("bootstrap", bootstrap)
        runner.defer_stage("teardown", teardown)
        runner.run_stage("deploy", deploy)
        runner.run_stage("validate_outputs", validate)

    sys.exit(runner.exit_code())

A failing stage is caught at the runner boundary, logged with its error,
and recorded; it never propagates far enough to prevent deferred stages
from running. With ``halt_on_failure`` (the default) the remaining
non-deferred stages are recorded as skipped instead of running against
state the failed stage never produced.

Each stage runs inside an OpenTelemetry span named ``stage:<name>``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import TracebackType
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from stagecore.errors import StageCoreError
from stagecore.logger import StageLogger
from stagecore.skip import SkipPolicy

logger = logging.getLogger(__name__)

StageAction = Callable[[], Any]

# Span attribute names
STAGE_NAME = "stage.name"
STAGE_STATUS = "stage.status"
STAGE_DEFERRED = "stage.deferred"
TEST_NAME = "test.name"

SKIP_REASON_DIRECTIVE = "skip directive"
SKIP_REASON_PRIOR_FAILURE = "prior failure"


# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    RED = "\033[91m"
    CYAN = "\033[96m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


class StageStatus(str, Enum):
    """Outcome of a stage."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    """Outcome of one stage execution."""
    name: str
    status: StageStatus
    started_at: str  # ISO format
    completed_at: str  # ISO format
    duration_seconds: float = 0.0
    deferred: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == StageStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
            "deferred": self.deferred,
            "skip_reason": self.skip_reason,
            "error": self.error,
            "error_type": self.error_type,
        }


class StagesFailedError(StageCoreError):
    """Raised by StageRunner.raise_on_failure when any stage failed."""

    def __init__(self, results: List[StageResult]):
        self.results = results
        lines = [f"{len(results)} stage(s) failed:"]
        lines.extend(f"  {r.name}: {r.error_type}: {r.error}" for r in results)
        super().__init__("\n".join(lines))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StageRunner:
    """
    Run named stages, honor skip directives, and guarantee deferred cleanup.

    A runner belongs to exactly one test case. Independent test cases get
    their own runner (and their own test directory), so nothing is shared
    between them.
    """

    def __init__(
        self,
        test_name: str,
        skip_policy: Optional[SkipPolicy] = None,
        stage_logger: Optional[StageLogger] = None,
        halt_on_failure: bool = True,
        tracer: Optional[trace.Tracer] = None,
    ):
        """
        Initialize the runner.

        Args:
            test_name: Name of the test case (used in logs and spans)
            skip_policy: Skip directive lookup; reads os.environ by default
            stage_logger: Structured stage logger
            halt_on_failure: Skip remaining non-deferred stages after a failure
            tracer: OpenTelemetry tracer; the global provider's by default
        """
        self.test_name = test_name
        self.skip_policy = skip_policy or SkipPolicy()
        self.stage_logger = stage_logger or StageLogger(test_name=test_name)
        self.halt_on_failure = halt_on_failure
        self._tracer = tracer or trace.get_tracer("stagecore.runner")
        self._results: List[StageResult] = []
        self._deferred: List[Tuple[str, StageAction]] = []
        self._failed = False

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "StageRunner":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        if exc is not None:
            self._failed = True
            logger.error(
                f"Test '{self.test_name}' aborted outside a stage: {exc_type.__name__}: {exc}"
            )
        self.run_deferred()
        return False

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    @property
    def failed(self) -> bool:
        """True if any non-skipped stage failed."""
        return self._failed

    @property
    def results(self) -> List[StageResult]:
        """Results in execution order."""
        return list(self._results)

    def result(self, stage_name: str) -> Optional[StageResult]:
        """Most recent result for ``stage_name``, if it ran."""
        for r in reversed(self._results):
            if r.name == stage_name:
                return r
        return None

    def run_stage(self, stage_name: str, action: StageAction) -> StageResult:
        """
        Execute ``action`` as the stage ``stage_name``.

        Skipping is a successful no-op: ``action`` is not called and nothing
        is raised. A failure in ``action`` is recorded and logged, never
        raised.

        Returns:
            The StageResult recorded for this execution
        """
        skip_reason = None
        if self.halt_on_failure and self._failed:
            skip_reason = SKIP_REASON_PRIOR_FAILURE
        return self._execute(stage_name, action, deferred=False, forced_skip=skip_reason)

    def defer_stage(self, stage_name: str, action: StageAction) -> None:
        """
        Register a cleanup stage.

        Deferred stages run last-in-first-out when the runner's scope exits
        (or on an explicit ``run_deferred()``), regardless of earlier failures.
        They still honor their own skip directive.
        """
        self._deferred.append((stage_name, action))
        logger.debug(f"Deferred stage '{stage_name}' registered for '{self.test_name}'")

    def run_deferred(self) -> List[StageResult]:
        """Run and clear every registered deferred stage, most recent first."""
        results = []
        while self._deferred:
            stage_name, action = self._deferred.pop()
            results.append(self._execute(stage_name, action, deferred=True))
        return results

    def _execute(
        self,
        stage_name: str,
        action: StageAction,
        deferred: bool,
        forced_skip: Optional[str] = None,
    ) -> StageResult:
        self.stage_logger.log_entered(stage_name)
        started_at = _now()
        start = time.monotonic()

        attributes = {
            STAGE_NAME: stage_name,
            STAGE_DEFERRED: deferred,
            TEST_NAME: self.test_name,
        }
        with self._tracer.start_as_current_span(
            f"stage:{stage_name}",
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            skip_reason = forced_skip
            if skip_reason is None and self.skip_policy.should_skip(stage_name):
                skip_reason = SKIP_REASON_DIRECTIVE

            if skip_reason is not None:
                directive = None
                if skip_reason == SKIP_REASON_DIRECTIVE:
                    directive = self.skip_policy.directive_key(stage_name)
                self.stage_logger.log_skipped(stage_name, reason=skip_reason, directive=directive)
                span.set_attribute(STAGE_STATUS, StageStatus.SKIPPED.value)
                return self._record(
                    StageResult(
                        name=stage_name,
                        status=StageStatus.SKIPPED,
                        started_at=started_at,
                        completed_at=_now(),
                        deferred=deferred,
                        skip_reason=skip_reason,
                    )
                )

            try:
                action()
            except Exception as e:
                duration = time.monotonic() - start
                self._failed = True
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.set_attribute(STAGE_STATUS, StageStatus.FAILED.value)
                logger.debug(f"Stage '{stage_name}' raised", exc_info=True)
                self.stage_logger.log_failed(
                    stage_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_seconds=round(duration, 3),
                )
                if deferred:
                    self.stage_logger.log_teardown_failed(stage_name, error=str(e))
                return self._record(
                    StageResult(
                        name=stage_name,
                        status=StageStatus.FAILED,
                        started_at=started_at,
                        completed_at=_now(),
                        duration_seconds=duration,
                        deferred=deferred,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                )

            duration = time.monotonic() - start
            span.set_attribute(STAGE_STATUS, StageStatus.COMPLETED.value)
            span.set_status(Status(StatusCode.OK))
            self.stage_logger.log_completed(stage_name, duration_seconds=round(duration, 3))
            return self._record(
                StageResult(
                    name=stage_name,
                    status=StageStatus.COMPLETED,
                    started_at=started_at,
                    completed_at=_now(),
                    duration_seconds=duration,
                    deferred=deferred,
                )
            )

    def _record(self, result: StageResult) -> StageResult:
        self._results.append(result)
        return result

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def exit_code(self) -> int:
        """0 if no non-skipped stage failed, 1 otherwise."""
        return 1 if self._failed else 0

    def raise_on_failure(self) -> None:
        """Raise StagesFailedError listing every failed stage, if any."""
        failures = [r for r in self._results if r.failed]
        if failures:
            raise StagesFailedError(failures)
        if self._failed:
            raise StageCoreError(f"Test '{self.test_name}' aborted outside a stage")

    def summary(self, use_colors: bool = False) -> str:
        """
        Generate a summary of stage outcomes.

        Args:
            use_colors: Whether to use ANSI color codes

        Returns:
            Formatted summary string
        """
        c = Colors if use_colors else type("NoColors", (), {k: "" for k in dir(Colors) if not k.startswith("_")})()

        status_symbols = {
            StageStatus.COMPLETED: f"{c.GREEN}PASS{c.RESET}",
            StageStatus.FAILED: f"{c.RED}FAIL{c.RESET}",
            StageStatus.SKIPPED: f"{c.CYAN}SKIP{c.RESET}",
        }

        lines = [f"{c.BOLD}Stages for {self.test_name}{c.RESET}", "=" * 40]
        for r in self._results:
            duration = f" ({r.duration_seconds:.1f}s)" if r.duration_seconds else ""
            detail = ""
            if r.error:
                detail = f" - {r.error_type}: {r.error}"
            elif r.skip_reason:
                detail = f" - {r.skip_reason}"
            lines.append(f"  {status_symbols[r.status]} {r.name}{duration}{detail}")

        if not self._results:
            lines.append("  (no stages recorded)")

        failed = sum(1 for r in self._results if r.failed)
        overall = f"{c.RED}FAILED{c.RESET}" if self._failed else f"{c.GREEN}PASSED{c.RESET}"
        lines.extend(["", f"Result: {overall} ({failed} failed, {len(self._results)} recorded)"])
        return "\n".join(lines)
