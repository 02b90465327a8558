"""
sqldeploy command line.

    sqldeploy plan                      show the ordered plan
    sqldeploy validate                  classify risk (exit 0 SAFE / 1 WARNINGS / 2 BLOCKED)
    sqldeploy deploy [--approve]        validate, gate and execute (3 = execution failed)
    sqldeploy rollback-to-previous      reverse the latest deployment
    sqldeploy restore-from VERSION      reverse every deployment after VERSION
    sqldeploy history                   list compiled deployments, newest first

Configuration comes from the environment / .env (see sqldeploy.core.config).
Reports go to stdout; logs go to stderr.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sqldeploy import __version__
from sqldeploy.artifacts.artifact_store import ReversalOutcome
from sqldeploy.core.config import Settings, get_settings
from sqldeploy.core.environment import Environment
from sqldeploy.core.errors import (
    ApprovalRequired,
    ConfigurationError,
    ExecutionFailed,
    SqlDeployError,
    ValidationBlocked,
)
from sqldeploy.core.logging import configure_logging
from sqldeploy.domain.models.validation import OverallResult, Severity, ValidationReport
from sqldeploy.domain.services.orchestrator import DeploymentOrchestrator, PreparedPlan
from sqldeploy.domain.services.risk_classifier import TableMetadata
from sqldeploy.execution.deployment_run import PostDeploymentCheck

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

EXIT_SAFE = 0
EXIT_WARNINGS = 1
EXIT_BLOCKED = 2
EXIT_EXECUTION_FAILED = 3
# Configuration, feed, ordering and history errors
EXIT_ERROR = 4

_SEVERITY_STYLE = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "green",
}
_RESULT_STYLE = {
    OverallResult.BLOCKED: "bold red",
    OverallResult.WARNINGS: "bold yellow",
    OverallResult.SAFE: "bold green",
}


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _print_plan(prepared: PreparedPlan) -> None:
    plan = prepared.plan
    table = Table(title=f"Deployment plan ({plan.dialect}, descriptor {plan.source_descriptor_version or '-'})")
    table.add_column("Phase", justify="right")
    table.add_column("#", justify="right")
    table.add_column("Source")
    table.add_column("Object")
    table.add_column("Type")
    table.add_column("Enhanced")
    for op in plan.operations:
        table.add_row(
            f"{op.phase:02d}",
            str(op.ordinal_within_phase),
            escape(op.source_path or op.source_kind.value),
            escape(op.object_name),
            op.object_type or "",
            "yes" if op.was_enhanced else "",
        )
    console.print(table)
    console.print(f"{len(plan)} operations, {prepared.enhanced} enhanced")
    if plan.requires_approval:
        console.print(f"[yellow]Approval-required phases:[/yellow] {plan.approval_phases}")
    for note in plan.notes:
        console.print(f"[dim]{escape(str(note))}[/dim]")
    for error in prepared.load_errors:
        console.print(f"[red]Unreadable script:[/red] {escape(str(error))}")
    for folder in prepared.ignored_folders:
        console.print(f"[dim]Ignored folder: {escape(folder)}[/dim]")


def _print_report(report: ValidationReport) -> None:
    if report.issues:
        table = Table(title="Validation issues")
        table.add_column("Severity")
        table.add_column("Phase", justify="right")
        table.add_column("Category")
        table.add_column("Description")
        table.add_column("Recommendation")
        for issue in report.issues:
            op = issue.related_operation
            style = _SEVERITY_STYLE[issue.severity]
            table.add_row(
                f"[{style}]{issue.severity.value.upper()}[/{style}]",
                f"{op.phase:02d}" if op else "",
                issue.category,
                escape(issue.description),
                escape(issue.recommendation),
            )
        console.print(table)

    result = report.overall_result
    counts = report.counts
    console.print(
        f"[{_RESULT_STYLE[result]}]{result.value.upper()}[/{_RESULT_STYLE[result]}]  "
        f"{counts['error']} errors, {counts['warning']} warnings, {counts['info']} info; "
        f"estimated {report.estimated_duration}, {report.estimated_storage_bytes} bytes"
    )
    for step in report.recommendations:
        console.print(f"  - {escape(step)}")


def _print_post_deployment(check: Optional[PostDeploymentCheck]) -> None:
    if check is None:
        return
    if check.error:
        console.print(f"[yellow]Post-deployment check could not run:[/yellow] {escape(check.error)}")
    elif check.missing_tables:
        console.print(
            f"[bold red]Post-deployment check failed:[/bold red] missing tables "
            f"{escape(', '.join(check.missing_tables))}"
        )
    else:
        console.print(
            f"Post-deployment check passed: {check.table_count_before} -> {check.table_count_after} tables"
        )


def _print_reversal(outcome: ReversalOutcome) -> None:
    console.print(escape(outcome.message))
    for step in outcome.manual_steps:
        console.print(f"  {escape(step)}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _load_metadata(path: Optional[Path], settings: Settings) -> TableMetadata:
    if path is None:
        return TableMetadata(default_row_count=settings.default_row_count)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read row counts from {path}: {e}")
    if not isinstance(raw, dict) or not all(isinstance(v, int) for v in raw.values()):
        raise ConfigurationError(f"Row counts file must map table names to integers: {path}")
    return TableMetadata.from_counts(raw, default_row_count=settings.default_row_count)


def cmd_plan(args, orchestrator: DeploymentOrchestrator) -> int:
    prepared = orchestrator.plan()
    if args.format == "json":
        payload = prepared.plan.to_dict()
        payload["load_errors"] = [str(e) for e in prepared.load_errors]
        console.print_json(data=payload)
    else:
        _print_plan(prepared)
    return EXIT_SAFE


def cmd_validate(args, orchestrator: DeploymentOrchestrator) -> int:
    prepared = orchestrator.validate(_load_metadata(args.row_counts, orchestrator.settings))
    report = prepared.report
    if args.format == "json":
        console.print_json(data=report.to_dict())
    else:
        _print_plan(prepared)
        _print_report(report)
    return report.overall_result.exit_code


def cmd_deploy(args, orchestrator: DeploymentOrchestrator) -> int:
    run = orchestrator.deploy(
        approve=args.approve,
        approved_by=args.approved_by,
        metadata=_load_metadata(args.row_counts, orchestrator.settings),
    )
    if args.format == "json":
        console.print_json(data={
            "run_id": run.run_id,
            "state": run.state.value,
            "approved_by": run.approved_by,
            "version": run.compiled.version if run.compiled else None,
            "server_version": run.server_version,
            "post_deployment": run.post_deployment.to_dict() if run.post_deployment else None,
            "operations": len(run.results),
            "restore_point": run.restore_point.to_dict() if run.restore_point else None,
            "report": run.report.to_dict() if run.report else None,
        })
    elif run.compiled is None:
        console.print("Nothing to deploy")
    else:
        _print_report(run.report)
        console.print(
            f"[bold green]Committed[/bold green] {run.compiled.version} "
            f"({len(run.results)} operations, approved by {run.approved_by})"
        )
        _print_post_deployment(run.post_deployment)
    return run.report.overall_result.exit_code if run.report else EXIT_SAFE


def cmd_rollback(args, orchestrator: DeploymentOrchestrator) -> int:
    outcome = orchestrator.rollback_to_previous()
    if args.format == "json":
        console.print_json(data=outcome.to_dict())
    else:
        _print_reversal(outcome)
    return EXIT_SAFE


def cmd_restore(args, orchestrator: DeploymentOrchestrator) -> int:
    outcome = orchestrator.restore_from(args.version)
    if args.format == "json":
        console.print_json(data=outcome.to_dict())
    else:
        _print_reversal(outcome)
    return EXIT_SAFE


def cmd_history(args, orchestrator: DeploymentOrchestrator) -> int:
    entries = orchestrator.history()
    if args.limit is not None:
        entries = (entry for _, entry in zip(range(args.limit), entries))

    if args.format == "json":
        console.print_json(data=[e.model_dump(mode="json") for e in entries])
        return EXIT_SAFE

    table = Table(title="Compiled deployments")
    table.add_column("Version")
    table.add_column("Generated (UTC)")
    table.add_column("Descriptor")
    table.add_column("Operations", justify="right")
    for entry in entries:
        table.add_row(
            entry.version,
            entry.generated_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.source_descriptor_version or "",
            str(entry.operation_count),
        )
    console.print(table)
    return EXIT_SAFE


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqldeploy", description="Schema deployment orchestrator")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Report format")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("plan", help="Show the ordered deployment plan").set_defaults(handler=cmd_plan)

    validate = subparsers.add_parser("validate", help="Classify deployment risk")
    validate.add_argument("--row-counts", type=Path, help="YAML/JSON mapping of table name to row count")
    validate.set_defaults(handler=cmd_validate)

    deploy = subparsers.add_parser("deploy", help="Validate and execute the plan")
    deploy.add_argument("--approve", action="store_true", help="Approve WARNINGS and approval-required phases")
    deploy.add_argument("--approved-by", default="operator", help="Name recorded with the approval")
    deploy.add_argument("--row-counts", type=Path, help="YAML/JSON mapping of table name to row count")
    deploy.set_defaults(handler=cmd_deploy)

    subparsers.add_parser(
        "rollback-to-previous", help="Reverse the latest deployment"
    ).set_defaults(handler=cmd_rollback)

    restore = subparsers.add_parser("restore-from", help="Reverse every deployment after VERSION")
    restore.add_argument("version", help="Compiled deployment version, e.g. 0003-1.4.0")
    restore.set_defaults(handler=cmd_restore)

    history = subparsers.add_parser("history", help="List compiled deployments, newest first")
    history.add_argument("--limit", type=int, help="Show at most this many entries")
    history.set_defaults(handler=cmd_history)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
        environment = Environment.current()
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        return EXIT_ERROR

    configure_logging(settings.log_level, settings.log_format)
    logger.debug(f"Configuration ({environment.value}): {Environment.get_config_summary()}")
    orchestrator = DeploymentOrchestrator(settings)

    try:
        return args.handler(args, orchestrator)
    except ValidationBlocked as e:
        err_console.print(f"[bold red]BLOCKED:[/bold red] {escape(str(e))}")
        return EXIT_BLOCKED
    except ApprovalRequired as e:
        err_console.print(f"[yellow]{escape(str(e))}[/yellow]; re-run with --approve")
        return EXIT_WARNINGS
    except ExecutionFailed as e:
        err_console.print(f"[bold red]Deployment failed and was rolled back:[/bold red] {escape(str(e))}")
        if e.restored:
            err_console.print("[yellow]Platform restore point was applied[/yellow]")
        return EXIT_EXECUTION_FAILED
    except SqlDeployError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
