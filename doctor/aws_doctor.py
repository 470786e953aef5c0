"""
aws_doctor.py
=============
Staged diagnostics for a local AWS CLI setup: environment, configuration,
authentication and connectivity, with optional safe or guided repairs.

Usage:
    python main.py doctor run
    python main.py doctor run --profile production --detailed
    python main.py doctor run --category environment
    python main.py doctor run --fix --dry-run
    python main.py doctor run --json | jq '.results | to_entries[] | select(.value.status=="fail")'
"""

import json
import time
from dataclasses import dataclass

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from doctor.auth import AuthService
from doctor.auto_repair import AutoRepairService
from doctor.checks_authentication import (
    CredentialValidationCheck,
    ProfileSwitchCheck,
    SsoTokenExpiryCheck,
)
from doctor.checks_configuration import (
    ConfigFileExistsCheck,
    CredentialsFileCheck,
    ProfileValidationCheck,
)
from doctor.checks_connectivity import (
    RegionAccessibilityCheck,
    ServiceEndpointCheck,
    StsCredentialCheck,
)
from doctor.checks_environment import (
    AwsCliInstallationCheck,
    PythonDependenciesCheck,
    PythonVersionCheck,
)
from doctor.config import DoctorConfig
from doctor.credentials import CredentialService
from doctor.errors import DoctorError
from doctor.log import setup_logging
from doctor.models import (
    STAGE_ORDER,
    CheckStage,
    CheckStatus,
    DiagnosticSummary,
    DoctorContext,
    RepairResult,
)
from doctor.profiles import ProfileManager
from doctor.registry import CheckRegistry
from doctor.service import DoctorService
from doctor.tokens import TokenManager

app = typer.Typer(no_args_is_help=True)
console = Console()


# ── Wiring ────────────────────────────────────────────────────────────────────


@dataclass
class Collaborators:
    profile_manager: ProfileManager
    token_manager: TokenManager
    credential_service: CredentialService
    auth_service: AuthService

    @classmethod
    def from_config(cls, config: DoctorConfig) -> "Collaborators":
        profile_manager = ProfileManager(config)
        token_manager = TokenManager(config, profile_manager)
        credential_service = CredentialService(config)
        return cls(
            profile_manager=profile_manager,
            token_manager=token_manager,
            credential_service=credential_service,
            auth_service=AuthService(profile_manager, token_manager, credential_service),
        )


def build_registry(config: DoctorConfig, services: Collaborators) -> CheckRegistry:
    """Register every check; registration order is execution order within a stage."""
    registry = CheckRegistry()

    registry.register(PythonVersionCheck(config))
    registry.register(AwsCliInstallationCheck())
    registry.register(PythonDependenciesCheck())

    registry.register(ConfigFileExistsCheck(config))
    registry.register(ProfileValidationCheck(config, services.profile_manager))
    registry.register(CredentialsFileCheck(config))

    registry.register(CredentialValidationCheck(services.auth_service))
    registry.register(SsoTokenExpiryCheck(services.token_manager))
    registry.register(ProfileSwitchCheck(services.auth_service))

    registry.register(StsCredentialCheck(services.credential_service))
    registry.register(ServiceEndpointCheck(services.credential_service))
    registry.register(
        RegionAccessibilityCheck(services.credential_service, config, services.profile_manager)
    )
    return registry


# ── Output ────────────────────────────────────────────────────────────────────

STATUS_COLOURS = {
    CheckStatus.PASS: "green",
    CheckStatus.WARN: "yellow",
    CheckStatus.FAIL: "red",
}

STATUS_ICONS = {
    CheckStatus.PASS: "✅",
    CheckStatus.WARN: "⚠️ ",
    CheckStatus.FAIL: "❌",
}


def print_stage_tables(summary: DiagnosticSummary, registry: CheckRegistry, detailed: bool) -> None:
    for stage in STAGE_ORDER:
        rows = [
            (check, summary.results[check.id])
            for check in registry.get_checks_for_stage(stage)
            if check.id in summary.results
        ]
        if not rows:
            continue

        table = Table(
            title=f"{stage.value.capitalize()} Checks",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold blue",
        )
        table.add_column("Status", width=10)
        table.add_column("Check", width=28)
        table.add_column("Message", width=60)
        table.add_column("Remediation", width=45)

        for check, result in rows:
            colour = STATUS_COLOURS[result.status]
            message = result.message
            if detailed and result.details:
                message += "\n" + "\n".join(
                    f"[dim]{key}: {value}[/dim]" for key, value in result.details.items()
                )
            table.add_row(
                f"[{colour}]{STATUS_ICONS[result.status]} {result.status.value}[/{colour}]",
                check.name,
                message,
                result.remediation if result.status != CheckStatus.PASS and result.remediation else "",
            )
        console.print(table)


def print_summary(summary: DiagnosticSummary) -> None:
    colour = STATUS_COLOURS[summary.overall_status]
    console.print(
        f"\n[bold]Overall: [{colour}]{summary.overall_status.value.upper()}[/{colour}][/bold]  "
        f"· {summary.total_checks} checks · {summary.passed_checks} passed · "
        f"{summary.warning_checks} warnings · {summary.failed_checks} failed  "
        f"· completed in [dim]{summary.execution_time / 1000:.1f}s[/dim]"
    )

    if summary.overall_status == CheckStatus.PASS:
        console.print("[green]All checks passed! Your AWS CLI environment is properly configured.[/green]")
        return

    console.print("\n[bold]Recommended actions:[/bold]")
    if summary.failed_checks:
        console.print("  • Address failed checks first as they may prevent proper operation")
        console.print("  • Use --interactive for guided repair assistance")
        console.print("  • Use --fix to automatically resolve safe issues")
    if summary.warning_checks:
        console.print("  • Review warning checks for potential improvements")
    console.print("  • Run with --detailed for more diagnostic information")
    console.print("  • Use --category to focus on a specific stage")


def print_repairs(repairs: list[RepairResult]) -> None:
    succeeded = sum(1 for r in repairs if r.success)
    console.print(
        f"\n[bold]Repairs:[/bold] {len(repairs)} total · {succeeded} successful · "
        f"{len(repairs) - succeeded} failed"
    )
    for repair in repairs:
        mark = "[green]✓[/green]" if repair.success else "[red]✗[/red]"
        console.print(f"{mark} {repair.message}")
        for operation in repair.operations:
            console.print(f"    • {operation}")
        if repair.backup_path:
            console.print(f"    [dim]Backup: {repair.backup_path}[/dim]")


def to_json(summary: DiagnosticSummary, repairs: list[RepairResult]) -> dict:
    output = summary.to_dict()
    if repairs:
        output["repairs"] = {
            "totalRepairs": len(repairs),
            "successfulRepairs": sum(1 for r in repairs if r.success),
            "failedRepairs": sum(1 for r in repairs if not r.success),
            "results": [r.to_dict() for r in repairs],
        }
    return output


# ── CLI commands ──────────────────────────────────────────────────────────────


@app.command("run")
def run(
    profile: str | None = typer.Option(None, "--profile", "-p", help="AWS profile name to check"),
    detailed: bool = typer.Option(False, "--detailed", "-d", help="Show detailed diagnostic information"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging on stderr"),
    json_output: bool = typer.Option(False, "--json", help="Output results in JSON format"),
    category: str | None = typer.Option(
        None,
        "--category",
        help="Run checks for one stage: environment, configuration, authentication, connectivity",
    ),
    fix: bool = typer.Option(False, "--fix", help="Automatically fix safe issues"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Enable guided repair mode"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Describe repairs without performing them"),
) -> None:
    """
    Validate environment, configuration, authentication and connectivity.

    Examples:\n
        python main.py doctor run\n
        python main.py doctor run --profile staging --fix --detailed\n
        python main.py doctor run --category connectivity --json
    """
    setup_logging(verbose)

    stage = None
    if category:
        valid = [s.value for s in CheckStage]
        if category.lower() not in valid:
            console.print(f"[red]Unknown category: {category}[/red]")
            console.print(f"Valid options: {', '.join(valid)}")
            raise typer.Exit(1)
        stage = CheckStage(category.lower())

    config = DoctorConfig.from_env()
    try:
        services = Collaborators.from_config(config)
        registry = build_registry(config, services)
        doctor = DoctorService(
            registry,
            max_concurrency=config.max_concurrency,
            show_progress=config.show_progress and not json_output,
        )
        repairer = None
        if fix or interactive:
            repairer = AutoRepairService(
                config,
                services.token_manager,
                services.auth_service,
                dry_run=dry_run,
                console=Console(stderr=json_output),
            )
    except DoctorError as e:
        console.print(f"[red]Failed to initialise diagnostics: {e}[/red]")
        raise typer.Exit(1)

    context = DoctorContext(
        profile=profile,
        detailed=detailed,
        interactive=interactive,
        auto_fix=fix,
    )

    if not json_output:
        console.print(
            f"\n[bold blue]🩺 Running diagnostics[/bold blue] · "
            f"profile: [cyan]{profile or config.active_profile}[/cyan] · "
            f"stages: [cyan]{stage.value if stage else 'all'}[/cyan]\n"
        )

    if stage is not None:
        start = time.monotonic()
        results = doctor.execute_stage(stage, context)
        summary = doctor.create_diagnostic_summary(results, round((time.monotonic() - start) * 1000, 2))
    else:
        summary = doctor.run_diagnostics(context)

    repairs: list[RepairResult] = []
    if repairer is not None and (summary.failed_checks or summary.warning_checks):
        if fix:
            if not json_output:
                console.print("\n[bold]Executing safe auto-repair operations...[/bold]")
            repairs.extend(repairer.execute_safe_repairs(context, summary.results))
        if interactive:
            if not json_output:
                console.print("\n[bold]Starting interactive repair mode...[/bold]")
            repairs.extend(repairer.execute_interactive_repairs(context, summary.results))

    if json_output:
        typer.echo(json.dumps(to_json(summary, repairs), indent=2, default=str))
    else:
        print_stage_tables(summary, registry, detailed)
        print_summary(summary)
        if repairs:
            print_repairs(repairs)

    if summary.overall_status == CheckStatus.FAIL:
        raise typer.Exit(1)


@app.command("list-checks")
def list_checks() -> None:
    """List every registered diagnostic check grouped by stage."""
    config = DoctorConfig.from_env()
    registry = build_registry(config, Collaborators.from_config(config))

    for stage in STAGE_ORDER:
        console.print(f"\n[bold]{stage.value.capitalize()}[/bold]")
        for check in registry.get_checks_for_stage(stage):
            console.print(f"  [cyan]{check.id:<24}[/cyan] {check.description}")
    console.print()
