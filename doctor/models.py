"""
models.py
=========
Shared data models for the doctor pipeline: validation stages, check results,
the execution context threaded through every check, and the aggregate
summary/repair records produced by a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

# ── Enums ─────────────────────────────────────────────────────────────────────


class CheckStage(str, Enum):
    ENVIRONMENT = "environment"
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    CONNECTIVITY = "connectivity"


# Each stage assumes the previous one is sound.
STAGE_ORDER: tuple[CheckStage, ...] = (
    CheckStage.ENVIRONMENT,
    CheckStage.CONFIGURATION,
    CheckStage.AUTHENTICATION,
    CheckStage.CONNECTIVITY,
)


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


# ── Check results ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckResult:
    status: CheckStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    remediation: str | None = None
    duration: float | None = None  # milliseconds, set by the orchestrator

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "remediation": self.remediation,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class DoctorContext:
    """Read-only state shared by every check in one diagnostic run.

    The per-stage fields are reserved for forwarding results between stages;
    the orchestrator does not populate them yet.
    """

    profile: str | None = None
    environment: dict[str, Any] | None = None
    configuration: dict[str, Any] | None = None
    authentication: dict[str, Any] | None = None
    detailed: bool = False
    interactive: bool = False
    auto_fix: bool = False


@runtime_checkable
class Check(Protocol):
    id: str
    name: str
    description: str
    stage: CheckStage

    def execute(self, context: DoctorContext) -> CheckResult: ...


# ── Aggregates ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DiagnosticSummary:
    total_checks: int
    passed_checks: int
    warning_checks: int
    failed_checks: int
    overall_status: CheckStatus
    results: dict[str, CheckResult]
    execution_time: float  # milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "totalChecks": self.total_checks,
                "passedChecks": self.passed_checks,
                "warningChecks": self.warning_checks,
                "failedChecks": self.failed_checks,
                "overallStatus": self.overall_status.value,
                "executionTime": self.execution_time,
            },
            "results": {check_id: r.to_dict() for check_id, r in self.results.items()},
        }


@dataclass
class RepairResult:
    success: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    backup_path: str | None = None
    operations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
            "operations": self.operations,
            "backupPath": self.backup_path,
        }
