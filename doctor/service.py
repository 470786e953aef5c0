"""
service.py
==========
Stage-by-stage orchestration of registered checks. Checks inside a stage run
concurrently on a bounded ThreadPoolExecutor when progress indicators are on,
and sequentially otherwise; stages never overlap. A failed environment stage
stops the run, since nothing downstream can be trusted without a working
runtime.

Usage:
    service = DoctorService(registry, max_concurrency=5, show_progress=True)
    summary = service.run_diagnostics(DoctorContext(profile="prod"))
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import replace

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from doctor.config import DEFAULT_MAX_CONCURRENCY
from doctor.models import (
    STAGE_ORDER,
    Check,
    CheckResult,
    CheckStage,
    CheckStatus,
    DiagnosticSummary,
    DoctorContext,
)
from doctor.registry import CheckRegistry

logger = logging.getLogger(__name__)

GENERIC_REMEDIATION = "Review system logs and retry the operation"

STATUS_GLYPHS = {
    CheckStatus.PASS: "[green]✓[/green]",
    CheckStatus.WARN: "[yellow]⚠[/yellow]",
    CheckStatus.FAIL: "[red]✗[/red]",
}


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)


class DoctorService:
    def __init__(
        self,
        registry: CheckRegistry,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        show_progress: bool = False,
        console: Console | None = None,
    ) -> None:
        self.registry = registry
        self.max_concurrency = max(1, max_concurrency)
        self.show_progress = show_progress
        self.console = console or Console(stderr=True)

    # ── Pipeline ──────────────────────────────────────────────────────────────

    def run_diagnostics(self, context: DoctorContext) -> DiagnosticSummary:
        """Run every stage in order and summarise whatever was collected."""
        start = time.monotonic()
        results: dict[str, CheckResult] = {}

        for stage in STAGE_ORDER:
            stage_results = self.execute_stage(stage, context)
            results.update(stage_results)

            context = self._update_context_with_stage_results(context, stage, stage_results)

            if self._should_stop_execution(stage, stage_results):
                logger.debug("Stopping after %s stage: critical failures", stage.value)
                break

        return self.create_diagnostic_summary(results, _elapsed_ms(start))

    def execute_stage(self, stage: CheckStage, context: DoctorContext) -> dict[str, CheckResult]:
        """Run only the checks registered for one stage, keyed by check id."""
        checks = self.registry.get_checks_for_stage(stage)
        if not checks:
            return {}

        logger.debug("Executing %d %s check(s)", len(checks), CheckStage(stage).value)

        if self.show_progress:
            results = self._execute_concurrently(checks, context)
        else:
            results = {check.id: self._execute_check(check, context) for check in checks}

        return {check.id: results[check.id] for check in checks}

    # ── Execution helpers ─────────────────────────────────────────────────────

    def _execute_check(self, check: Check, context: DoctorContext) -> CheckResult:
        """Run one check, stamping its duration and converting any exception into a fail."""
        start = time.monotonic()
        try:
            return replace(check.execute(context), duration=_elapsed_ms(start))
        except Exception as exc:
            logger.debug("Check %s raised", check.id, exc_info=True)
            return CheckResult(
                status=CheckStatus.FAIL,
                message=f"Check execution failed: {exc}",
                remediation=GENERIC_REMEDIATION,
                duration=_elapsed_ms(start),
            )

    def _execute_concurrently(
        self, checks: list[Check], context: DoctorContext
    ) -> dict[str, CheckResult]:
        results: dict[str, CheckResult] = {}
        workers = min(self.max_concurrency, len(checks))

        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        ) as progress, ThreadPoolExecutor(max_workers=workers) as executor:
            futures: dict[Future[CheckResult], tuple[Check, int]] = {}
            for check in checks:
                task_id = progress.add_task(check.name, total=1)
                futures[executor.submit(self._execute_check, check, context)] = (check, task_id)

            for future in as_completed(futures):
                check, task_id = futures[future]
                # _execute_check never raises
                result = future.result()
                results[check.id] = result
                progress.update(
                    task_id,
                    completed=1,
                    description=f"{check.name} {STATUS_GLYPHS[result.status]}",
                )

        return results

    def _update_context_with_stage_results(
        self,
        context: DoctorContext,
        stage: CheckStage,
        results: dict[str, CheckResult],
    ) -> DoctorContext:
        # Extension point for forwarding stage findings to later stages.
        return context

    def _should_stop_execution(self, stage: CheckStage, results: dict[str, CheckResult]) -> bool:
        if stage == CheckStage.ENVIRONMENT:
            return any(r.status == CheckStatus.FAIL for r in results.values())
        return False

    # ── Summary ───────────────────────────────────────────────────────────────

    @staticmethod
    def create_diagnostic_summary(
        results: dict[str, CheckResult], execution_time: float
    ) -> DiagnosticSummary:
        """Tally results and derive the overall status (fail > warn > pass)."""
        passed = sum(1 for r in results.values() if r.status == CheckStatus.PASS)
        warned = sum(1 for r in results.values() if r.status == CheckStatus.WARN)
        failed = sum(1 for r in results.values() if r.status == CheckStatus.FAIL)

        if failed > 0:
            overall = CheckStatus.FAIL
        elif warned > 0:
            overall = CheckStatus.WARN
        else:
            overall = CheckStatus.PASS

        return DiagnosticSummary(
            total_checks=len(results),
            passed_checks=passed,
            warning_checks=warned,
            failed_checks=failed,
            overall_status=overall,
            results=dict(results),
            execution_time=execution_time,
        )
