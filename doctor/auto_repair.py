"""
auto_repair.py
==============
Corrective actions driven by a diagnostic run.

Safe repairs run unattended and only ever add or clean up: expired token cache
entries, missing ~/.aws directories, stale tmp-* files and loose directory
permissions. Interactive repairs are offered per failing check and each one is
confirmed through a Prompter before anything runs. A file is copied into the
backup directory before it is touched.

Usage:
    service = AutoRepairService(config, token_manager, auth_service, dry_run=True)
    for result in service.execute_safe_repairs(context, summary.results):
        print(result.message, result.operations)
"""

import itertools
import logging
import os
import shutil
import stat
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm, Prompt

from doctor.auth import AuthService
from doctor.config import DoctorConfig
from doctor.errors import AutoRepairError, DoctorError
from doctor.models import CheckResult, CheckStatus, DoctorContext, RepairResult
from doctor.tokens import TokenManager

logger = logging.getLogger(__name__)

PRIVATE_DIR_MODE = 0o700
TEMP_FILE_PREFIX = "tmp-"
SECONDS_PER_DAY = 24 * 60 * 60


# ── Prompting ─────────────────────────────────────────────────────────────────


class Prompter(Protocol):
    def confirm(self, message: str) -> bool: ...

    def select(self, message: str, choices: Sequence[str]) -> str: ...


class RichPrompter:
    """Terminal prompts via rich.prompt."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def confirm(self, message: str) -> bool:
        return Confirm.ask(message, console=self.console, default=False)

    def select(self, message: str, choices: Sequence[str]) -> str:
        return Prompt.ask(message, console=self.console, choices=list(choices), default=choices[0])


@dataclass
class RepairOpportunity:
    id: str
    description: str
    check_id: str
    execute: Callable[[], RepairResult]


# ── Service ───────────────────────────────────────────────────────────────────


class AutoRepairService:
    def __init__(
        self,
        config: DoctorConfig,
        token_manager: TokenManager,
        auth_service: AuthService,
        prompter: Prompter | None = None,
        dry_run: bool = False,
        console: Console | None = None,
    ) -> None:
        self.config = config
        self.token_manager = token_manager
        self.auth_service = auth_service
        self.console = console or Console()
        self.prompter = prompter or RichPrompter(self.console)
        self.dry_run = dry_run

    # ── Safe repairs ──────────────────────────────────────────────────────────

    def execute_safe_repairs(
        self, context: DoctorContext, check_results: dict[str, CheckResult]
    ) -> list[RepairResult]:
        """Run every safe repair in order; one failing does not stop the rest."""
        operations = [
            ("clear-expired-tokens", self.clear_expired_tokens),
            ("create-directories", self.create_missing_directories),
            ("clean-temp-files", self.clean_orphaned_temp_files),
            ("fix-permissions", self.fix_cache_permissions),
        ]

        results = []
        for name, operation in operations:
            try:
                result = operation()
            except Exception:
                logger.debug("Safe repair %s failed", name, exc_info=True)
                continue
            if result.success or result.operations:
                results.append(result)
        return results

    def clear_expired_tokens(self) -> RepairResult:
        try:
            issues = self.token_manager.check_token_expiry()
            expired = [t for t in issues if t.status == "expired"]
            if not expired:
                return RepairResult(
                    True, "No expired tokens found", details={"tokensChecked": len(issues)}
                )
            cleared = self.token_manager.clear_expired_tokens(dry_run=self.dry_run)
        except DoctorError as e:
            raise AutoRepairError(
                f"Failed to clear expired tokens: {e}",
                operation="clear-expired-tokens",
                check_id="sso-token-expiry",
            ) from e

        verb = "Would clear" if self.dry_run else "Cleared"
        details = {
            "expiredCount": len(expired),
            "clearedCount": len(cleared),
            # Refreshable entries are left for the AWS CLI to renew.
            "keptRefreshable": [t.profile_name for t in expired if t.refreshable],
            "dryRun": self.dry_run,
        }
        return RepairResult(
            True,
            f"{verb} {len(cleared)} expired SSO tokens",
            details=details,
            operations=[f"{verb} expired token for profile: {t.profile_name}" for t in cleared],
        )

    def create_missing_directories(self) -> RepairResult:
        required = [
            self.config.aws_dir,
            self.config.aws_dir / "cli",
            self.config.sso_cache_dir,
            self.config.backup_dir,
        ]

        operations = []
        created = []
        for directory in required:
            if directory.exists():
                continue
            if self.dry_run:
                operations.append(f"Would create directory: {directory}")
                continue
            try:
                directory.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
            except OSError as e:
                raise AutoRepairError(
                    f"Failed to create {directory}: {e}",
                    operation="create-directories",
                    check_id="config-file-exists",
                ) from e
            operations.append(f"Created directory: {directory}")
            created.append(str(directory))

        return RepairResult(
            True,
            f"Created {len(created)} missing directories" if created else "All required directories exist",
            details={"createdDirs": created, "requiredDirs": len(required)},
            operations=operations,
        )

    def clean_orphaned_temp_files(self) -> RepairResult:
        directories = [self.config.cli_cache_dir, self.config.sso_cache_dir]
        cutoff = time.time() - self.config.temp_file_max_age_days * SECONDS_PER_DAY

        operations = []
        cleaned = 0
        for directory in directories:
            for path in self._stale_temp_files(directory, cutoff):
                if self.dry_run:
                    operations.append(f"Would clean old temp file: {path.name}")
                    continue
                try:
                    path.unlink()
                except OSError as e:
                    logger.debug("Could not remove %s: %s", path, e)
                    continue
                operations.append(f"Cleaned old temp file: {path.name}")
                cleaned += 1

        return RepairResult(
            True,
            f"Cleaned {cleaned} orphaned temporary files" if cleaned else "No orphaned temporary files found",
            details={"cleanedFiles": cleaned, "dirsChecked": len(directories)},
            operations=operations,
        )

    def fix_cache_permissions(self) -> RepairResult:
        directories = [self.config.aws_dir, self.config.aws_dir / "cli", self.config.aws_dir / "sso"]

        operations = []
        fixed = 0
        for directory in directories:
            try:
                mode = stat.S_IMODE(directory.stat().st_mode)
            except FileNotFoundError:
                continue
            if mode == PRIVATE_DIR_MODE:
                continue
            if self.dry_run:
                operations.append(f"Would fix permissions for: {directory}")
                continue
            try:
                os.chmod(directory, PRIVATE_DIR_MODE)
            except OSError as e:
                raise AutoRepairError(
                    f"Failed to fix permissions for {directory}: {e}", operation="fix-permissions"
                ) from e
            operations.append(f"Fixed permissions for: {directory}")
            fixed += 1

        return RepairResult(
            True,
            f"Fixed permissions for {fixed} cache directories"
            if fixed
            else "All cache directories have correct permissions",
            details={"fixedDirs": fixed, "dirsChecked": len(directories)},
            operations=operations,
        )

    @staticmethod
    def _stale_temp_files(directory: Path, cutoff: float) -> list[Path]:
        try:
            entries = list(directory.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.debug("Error scanning temp directory %s: %s", directory, e)
            return []

        stale = []
        for path in sorted(entries):
            if not path.name.startswith(TEMP_FILE_PREFIX):
                continue
            try:
                info = path.stat()
            except OSError:
                continue
            if stat.S_ISREG(info.st_mode) and info.st_mtime < cutoff:
                stale.append(path)
        return stale

    # ── Interactive repairs ───────────────────────────────────────────────────

    def identify_repair_opportunities(
        self, check_results: dict[str, CheckResult]
    ) -> list[RepairOpportunity]:
        """Map failing or warning checks onto the repairs known for them."""
        actions = {
            "sso-token-expiry": ("refresh-sso-tokens", "Refresh expired SSO tokens", self.refresh_sso_tokens),
            "config-file-exists": ("create-config-file", "Create missing AWS config file", self.create_config_file),
        }

        opportunities = []
        for check_id, result in check_results.items():
            if result.status not in (CheckStatus.FAIL, CheckStatus.WARN) or check_id not in actions:
                continue
            repair_id, description, execute = actions[check_id]
            opportunities.append(RepairOpportunity(repair_id, description, check_id, execute))
        return opportunities

    def execute_interactive_repairs(
        self, context: DoctorContext, check_results: dict[str, CheckResult]
    ) -> list[RepairResult]:
        opportunities = self.identify_repair_opportunities(check_results)
        if not opportunities:
            return [
                RepairResult(
                    True,
                    "No repair opportunities identified",
                    details={"checkResultsAnalyzed": len(check_results)},
                )
            ]

        self.console.print(f"\nFound {len(opportunities)} potential repair operations:")

        results = []
        for opportunity in opportunities:
            if not self.prompter.confirm(f"{opportunity.description}. Proceed with this repair?"):
                self.console.print(f"[dim]⏭ Skipped: {opportunity.description}[/dim]")
                continue
            try:
                result = opportunity.execute()
            except Exception as e:
                logger.debug("Repair %s failed", opportunity.id, exc_info=True)
                result = RepairResult(
                    False,
                    f"Failed to execute repair: {e}",
                    details={"operation": opportunity.id},
                )
                self.console.print(f"[red]✗ {result.message}[/red]")
            else:
                mark = "[green]✓" if result.success else "[yellow]⚠"
                self.console.print(f"{mark} {result.message}[/]")
            results.append(result)
        return results

    def refresh_sso_tokens(self) -> RepairResult:
        sso_profiles = [p.name for p in self.auth_service.list_profiles() if p.type == "sso"]
        if not sso_profiles:
            return RepairResult(False, "No SSO profiles found to refresh")

        profile = self.prompter.select("Select SSO profile to refresh", sso_profiles)
        command = ["aws", "sso", "login", "--profile", profile]

        if self.dry_run:
            return RepairResult(
                True,
                f"Would refresh SSO token for profile: {profile}",
                details={"profile": profile, "dryRun": True},
                operations=[f"Would run '{' '.join(command)}'"],
            )

        self._run(command, operation="refresh-sso-tokens", check_id="sso-token-expiry")
        return RepairResult(
            True,
            f"Successfully refreshed SSO token for profile: {profile}",
            details={"profile": profile},
            operations=[f"Refreshed SSO token for profile: {profile}"],
        )

    def create_config_file(self) -> RepairResult:
        config_path = self.config.config_file
        operations = []
        backup_path = None

        if config_path.exists():
            backup = self.config.backup_dir / f"config.backup.{int(time.time() * 1000)}"
            if self.dry_run:
                operations.append(f"Would back up {config_path} to {backup}")
            else:
                backup_path = str(self.backup_file(config_path, backup))
                operations.append(f"Backed up {config_path} to {backup_path}")

        if self.dry_run:
            operations.append("Would run 'aws configure'")
            return RepairResult(
                True,
                "Would create AWS configuration using aws configure",
                details={"configPath": str(config_path), "dryRun": True},
                operations=operations,
            )

        if not self.prompter.confirm("Run 'aws configure' to set up basic configuration?"):
            return RepairResult(
                False,
                "Configuration setup cancelled by user",
                backup_path=backup_path,
                operations=operations,
            )

        self._run(["aws", "configure"], operation="create-config-file", check_id="config-file-exists")
        operations.append("Created AWS configuration using aws configure")
        return RepairResult(
            True,
            "AWS configuration completed successfully",
            details={"configPath": str(config_path)},
            backup_path=backup_path,
            operations=operations,
        )

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def backup_file(source: Path, destination: Path) -> Path:
        """Copy source to destination, never overwriting an earlier backup.

        When the destination is taken, ".1", ".2" and so on are appended.
        """
        candidate = destination
        try:
            destination.parent.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
            for attempt in itertools.count(1):
                try:
                    with open(source, "rb") as src, open(candidate, "xb") as dst:
                        shutil.copyfileobj(src, dst)
                    break
                except FileExistsError:
                    candidate = destination.with_name(f"{destination.name}.{attempt}")
            shutil.copystat(source, candidate)
        except OSError as e:
            raise AutoRepairError(
                f"Failed to back up {source}: {e}",
                operation="backup",
                backup_path=str(candidate),
            ) from e
        return candidate

    @staticmethod
    def _run(command: list[str], operation: str, check_id: str) -> None:
        try:
            subprocess.run(command, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise AutoRepairError(
                f"'{' '.join(command)}' failed: {e}", operation=operation, check_id=check_id
            ) from e
