"""
CLI interface for infraplan.

Provides commands to validate declarations, show a plan, apply it, destroy
everything in state, and inspect state, run history, and outputs.

Declarations are YAML/JSON files in the configured declarations directory
(see infraplan.declarations); configuration lives in
$INFRAPLAN_HOME/config.yaml (see infraplan.config).
"""

import json
import shutil
from pathlib import Path
from typing import Any, Optional

import click
from rich.markup import escape
from rich.table import Table

from infraplan import __version__
from infraplan.errors import InfraplanError
from infraplan.schemas import Action, Plan, StepStatus
from infraplan.utils import (
    console,
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)


STATUS_MARKS = {
    StepStatus.COMPLETED: "[green]✓[/green]",
    StepStatus.FAILED: "[red]✗[/red]",
    StepStatus.SKIPPED: "[yellow]-[/yellow]",
    StepStatus.CANCELLED: "[yellow]⊘[/yellow]",
}


@click.group()
@click.version_option(version=__version__, prog_name="infraplan")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.yaml (default: $INFRAPLAN_HOME/config.yaml)",
)
@click.pass_context
def main(ctx, config_path: Optional[Path]):
    """
    infraplan - Declarative infrastructure engine.

    Plan and apply a declared graph of resources against a provider.
    """
    from infraplan.config import load_config

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    try:
        config = load_config(config_path)
    except (FileNotFoundError, InfraplanError) as e:
        # init works without a config; every other command checks _require_config
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console(),
    )


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'infraplan init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _load_resources(config, stage: Optional[str], declarations: Optional[Path]):
    from infraplan.declarations import DeclarationLoader

    loader = DeclarationLoader(declarations or config.get_declarations_dir())
    return loader.load(config.settings_for(stage))


def _make_engine(config, concurrency: Optional[int] = None):
    from infraplan.engine import Engine

    return Engine.from_config(config, concurrency=concurrency)


def _fail(message: str, as_json: bool = False) -> None:
    print_error(escape(message), stderr=as_json)
    raise SystemExit(1)


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _print_plan(plan: Plan) -> None:
    if not plan.has_changes:
        print_success(f"No changes. {len(plan)} resources up to date.")
        return

    for step in plan:
        if step.action == Action.NOOP:
            continue
        suffix = " (after dependencies)" if step.deferred else ""
        console.print(
            f"  {step.action.symbol} {step.action.value:<6} {step.logical_id} "
            f"[dim]{step.kind}: {escape(step.reason)}{suffix}[/dim]"
        )
    counts = plan.counts()
    console.print(
        f"\nPlan: {counts['create']} to create, {counts['update']} to update, "
        f"{counts['delete']} to delete, {counts['noop']} unchanged."
    )


def _print_outcome(outcome) -> None:
    for result in outcome.result.results:
        if result.step.action == Action.NOOP and result.ok:
            continue
        line = f"  {STATUS_MARKS[result.status]} {result.step.action.value} {result.logical_id}"
        if result.duration_ms is not None:
            line += f" [dim]({format_duration(result.duration_ms / 1000)})[/dim]"
        if result.error is not None:
            line += f" [dim]{escape(str(result.error))}[/dim]"
        console.print(line)


def _finish(outcome, as_json: bool, verb: str) -> None:
    if as_json:
        _print_json(outcome.to_dict())
    else:
        _print_outcome(outcome)
        for name, value in outcome.outputs.items():
            console.print(f"  {name} = {escape(str(value))}")

    if outcome.success:
        if not as_json:
            print_success(f"{verb} complete (run {outcome.run.run_id})")
        return

    error = outcome.result.first_error
    _fail(f"{verb} failed: {error}" if error else f"{verb} failed", as_json)


# =============================================================================
# Setup
# =============================================================================


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.option("--stack", help="Copy a bundled sample stack into the declarations directory")
@click.pass_context
def init(ctx, force: bool, stack: Optional[str]):
    """Initialize infraplan configuration."""
    import yaml

    from infraplan.config import CONFIG_FILE, default_config, get_infraplan_home
    from infraplan.declarations import stack_dir

    home = get_infraplan_home()
    cfg_path = ctx.obj.get("config_path") or home / CONFIG_FILE

    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    default_cfg = default_config(home)
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))
    click.echo(f"Initialized infraplan config at {cfg_path}")

    if stack:
        try:
            source = stack_dir(stack)
        except InfraplanError as e:
            _fail(str(e))
        target = Path(default_cfg["declarations_dir"])
        target.mkdir(parents=True, exist_ok=True)
        for path in sorted(source.glob("*.yaml")):
            shutil.copy(path, target / path.name)
        click.echo(f"Copied stack '{stack}' to {target}")


# =============================================================================
# Plan / Apply / Destroy
# =============================================================================


@main.command("validate")
@click.option("--stage", help="Stage whose settings resolve @ctx.* references")
@click.option("--declarations", type=click.Path(path_type=Path), help="Declarations directory or file")
@click.pass_context
def validate(ctx, stage: Optional[str], declarations: Optional[Path]):
    """Load declarations and check the dependency graph."""
    from infraplan import graph, planner

    config = _require_config(ctx)
    try:
        resources = _load_resources(config, stage, declarations)
        ordered = planner.order(graph.build(resources))
    except InfraplanError as e:
        _fail(str(e))

    print_success(f"{len(resources)} resources, {len(resources.outputs)} outputs valid")
    for index, resource in enumerate(ordered, start=1):
        console.print(f"  {index:>3}. {resource.logical_id} [dim]{resource.kind}[/dim]")


@main.command("plan")
@click.option("--stage", help="Stage whose settings resolve @ctx.* references")
@click.option("--declarations", type=click.Path(path_type=Path), help="Declarations directory or file")
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
@click.pass_context
def plan_cmd(ctx, stage: Optional[str], declarations: Optional[Path], as_json: bool):
    """
    Show what apply would do, without calling the provider.

    Examples:
        infraplan plan --stage dev
        infraplan plan --declarations ./infra --json
    """
    config = _require_config(ctx)
    try:
        resources = _load_resources(config, stage, declarations)
        plan = _make_engine(config).plan(resources)
    except InfraplanError as e:
        _fail(str(e), as_json)

    if as_json:
        _print_json(plan.to_dict())
    else:
        _print_plan(plan)


@main.command("apply")
@click.option("--stage", help="Stage whose settings resolve @ctx.* references")
@click.option("--declarations", type=click.Path(path_type=Path), help="Declarations directory or file")
@click.option("--concurrency", type=click.IntRange(min=1), help="Maximum provider calls in flight")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON")
@click.pass_context
def apply_cmd(
    ctx,
    stage: Optional[str],
    declarations: Optional[Path],
    concurrency: Optional[int],
    as_json: bool,
):
    """
    Converge the provider to the declared resources.

    Exits nonzero and prints the first step error if any step fails.
    State reflects exactly the steps that succeeded; re-running apply
    resumes from there.
    """
    config = _require_config(ctx)
    try:
        resources = _load_resources(config, stage, declarations)
        engine = _make_engine(config, concurrency)
        if not as_json:
            print_banner("infraplan apply")
        outcome = engine.apply(resources)
    except InfraplanError as e:
        _fail(str(e), as_json)

    _finish(outcome, as_json, "Apply")


@main.command("destroy")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--concurrency", type=click.IntRange(min=1), help="Maximum provider calls in flight")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON")
@click.pass_context
def destroy_cmd(ctx, yes: bool, concurrency: Optional[int], as_json: bool):
    """Delete every resource recorded in state, dependents first."""
    config = _require_config(ctx)
    try:
        engine = _make_engine(config, concurrency)
        count = len(engine.store.load())
        if count == 0:
            print_info("State is empty; nothing to destroy.")
            return
        if not yes:
            click.confirm(f"Destroy {count} resources?", abort=True)
        outcome = engine.destroy()
    except InfraplanError as e:
        _fail(str(e), as_json)

    _finish(outcome, as_json, "Destroy")


@main.command("outputs")
@click.option("--stage", help="Stage whose settings resolve @ctx.* references")
@click.option("--declarations", type=click.Path(path_type=Path), help="Declarations directory or file")
@click.option("--json", "as_json", is_flag=True, help="Print outputs as JSON")
@click.pass_context
def outputs_cmd(ctx, stage: Optional[str], declarations: Optional[Path], as_json: bool):
    """Show declaration outputs resolved against applied state."""
    from infraplan import graph
    from infraplan.engine import resolve_outputs

    config = _require_config(ctx)
    try:
        resources = _load_resources(config, stage, declarations)
        graph.build(resources)
        outputs = resolve_outputs(resources.outputs, _make_engine(config).store)
    except InfraplanError as e:
        _fail(str(e), as_json)

    if as_json:
        _print_json(outputs)
        return
    if not outputs:
        click.echo("No outputs declared.")
        return
    for name, value in outputs.items():
        if value is None:
            print_warning(f"{name} = (not applied)")
        else:
            click.echo(f"{name} = {value}")


# =============================================================================
# State Commands
# =============================================================================


@main.group("state")
def state_group():
    """Inspect applied state and run history."""
    pass


@state_group.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print records as JSON")
@click.pass_context
def state_list(ctx, as_json: bool):
    """List resources recorded in state."""
    config = _require_config(ctx)
    records = _make_engine(config).store.load()

    if as_json:
        _print_json([r.to_dict() for r in records.values()])
        return
    if not records:
        click.echo("No resources in state.")
        return

    table = Table(title="Applied Resources", show_header=True)
    table.add_column("Logical ID", style="cyan")
    table.add_column("Kind", style="white")
    table.add_column("Provider ID", style="dim")
    table.add_column("Last Applied")
    for record in records.values():
        table.add_row(
            record.logical_id,
            record.kind,
            record.provider_id,
            record.last_applied_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@state_group.command("show")
@click.argument("logical_id")
@click.pass_context
def state_show(ctx, logical_id: str):
    """Show the state record for LOGICAL_ID."""
    config = _require_config(ctx)
    record = _make_engine(config).store.get(logical_id)
    if record is None:
        click.echo(f"✗ Not in state: {logical_id}", err=True)
        raise SystemExit(1)
    _print_json(record.to_dict())


@state_group.command("runs")
@click.option("--limit", default=10, show_default=True, type=int, help="Number of runs to show")
@click.option("--json", "as_json", is_flag=True, help="Print runs as JSON")
@click.pass_context
def state_runs(ctx, limit: int, as_json: bool):
    """Show recent apply/destroy runs, newest first."""
    config = _require_config(ctx)
    runs = list(reversed(_make_engine(config).store.list_runs()))[:limit]

    if as_json:
        _print_json([run.to_dict() for run in runs])
        return
    if not runs:
        click.echo("No runs recorded.")
        return
    for run in runs:
        duration = format_duration(run.duration_ms / 1000) if run.duration_ms is not None else "-"
        click.echo(
            f"{run.run_id}  {run.command:<8} {run.status:<10} "
            f"{run.started_at.strftime('%Y-%m-%d %H:%M:%S')}  {duration}"
        )


if __name__ == "__main__":
    main()
