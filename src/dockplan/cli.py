# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from dockplan import settings
from dockplan.engine import Engine
from dockplan.errors import PlanError, SpecLoadError
from dockplan.executor import ShellStageRunner
from dockplan.loader import Stack, load_stack, stack_to_dict
from dockplan.store import FingerprintStore
from dockplan.ui.console import Console, get_console, set_console


def find_stack_files() -> list[Path]:
    """
    Find all stack files in the current directory.

    Returns:
        List of Path objects for stack files
    """
    stack_files = []
    current_dir = Path(".")

    default_stack = current_dir / settings.STACK_FILE
    if default_stack.exists():
        stack_files.append(default_stack)

    for pattern in ("*_stack.py", "*_stack.json"):
        for path in current_dir.glob(pattern):
            if path.name != default_stack.name:
                stack_files.append(path)

    return sorted(stack_files)


def discover_stack(stack_arg: str | None) -> Path:
    """
    Discover stack file from argument or default.

    Raises:
        SystemExit: If no stack file can be found or several exist
    """
    console = get_console()

    if stack_arg:
        stack_path = Path(stack_arg)
        if not stack_path.exists() and stack_path.suffix not in (".py", ".json"):
            stack_path = Path(str(stack_path) + ".py")
        if not stack_path.exists():
            console.print_error(
                "Stack file not found",
                f"Could not find stack file: {stack_arg}",
                suggestion="Create a stack file or specify a different path:\n  dockplan plan --stack my_stack.py",
            )
            sys.exit(1)
        return stack_path

    stack_files = find_stack_files()

    if len(stack_files) == 0:
        console.print_error(
            "No stack file found",
            "Could not find any stack files.",
            details=[
                "Looked for:",
                f"  {settings.STACK_FILE}",
                "  *_stack.py",
                "  *_stack.json",
            ],
            suggestion="Create a stack file or specify one explicitly:\n  dockplan plan --stack my_stack.py",
        )
        sys.exit(1)

    if len(stack_files) > 1:
        file_list = "\n".join(f"  {f}" for f in stack_files)
        console.print_error(
            "Multiple stack files found",
            "Found multiple stack files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a stack explicitly:\n  dockplan plan --stack {settings.STACK_FILE}",
        )
        sys.exit(1)

    return stack_files[0]


def _load(stack_arg: str | None) -> Stack:
    stack_path = discover_stack(stack_arg)
    stack = load_stack(stack_path)
    get_console().print_debug(
        f"Loaded {len(stack.stages)} stage(s), {len(stack.services)} service(s) from {stack_path}"
    )
    return stack


def _budget(stack: Stack, cpu, memory):
    if cpu is not None or memory is not None:
        return settings.budget_from(cpu, memory)
    if stack.budget is not None:
        return stack.budget
    return settings.budget_from()


def _engine(state_dir: str, context: str, workers=None, fail_fast: bool = True) -> Engine:
    return Engine(
        store=FingerprintStore(state_dir),
        context=context,
        max_workers=workers if workers is not None else settings.MAX_WORKERS,
        fail_fast=fail_fast,
    )


def _fail(ctx, exc: Exception) -> None:
    console = get_console()
    if isinstance(exc, SpecLoadError):
        console.print_error("Failed to load stack", str(exc))
    elif isinstance(exc, PlanError):
        console.print_error(type(exc).__name__, str(exc))
    else:
        console.print_exception(exc)
    sys.exit(1)


stack_option = click.option(
    "--stack",
    default=None,
    help=f"Stack file path (defaults to {settings.STACK_FILE} if present)",
)
state_option = click.option("--state-dir", default=settings.STATE_DIR, show_default=True, help="Fingerprint store directory")
context_option = click.option("--context", default=".", show_default=True, help="Build context directory")


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """dockplan: cache-aware build planner and health-gated startup."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@stack_option
@state_option
@context_option
@click.option("--levels/--no-levels", default=False, help="Also print parallel batches")
@click.pass_context
def plan(ctx, stack, state_dir, context, levels):
    """Show which stages are cache hits and which must rebuild."""
    console = get_console()
    try:
        resolved = _load(stack)
        build_plan = _engine(state_dir, context).plan_build(resolved.stages)
    except Exception as e:
        _fail(ctx, e)

    console.print_plan_started(resolved.source, len(resolved.stages), len(resolved.services))
    console.print_header("BUILD PLAN")
    for planned in build_plan:
        console.print_plan_stage(planned.name, planned.status.value, planned.reason)
    if levels:
        console.print_header("BATCHES")
        console.print_levels(build_plan.levels())
    console.print_info(f"\n{len(build_plan.misses())} to rebuild, {len(build_plan.hits())} cached")


@cli.command()
@stack_option
@state_option
@context_option
@click.option("--exec", "exec_template", required=True, help='Command per stage, e.g. "docker build --target {stage} ."')
@click.option("--workers", default=None, type=int, help="Number of parallel stage builds")
@click.option("--fail-fast/--no-fail-fast", default=True, help="Stop scheduling new stages after first failure")
@click.pass_context
def build(ctx, stack, state_dir, context, exec_template, workers, fail_fast):
    """Build every stage that missed the cache, then record fingerprints."""
    console = get_console()
    engine = None
    try:
        resolved = _load(stack)
        engine = _engine(state_dir, context, workers, fail_fast)
        runner = ShellStageRunner(exec_template, cwd=context)
        result = engine.build(resolved.stages, runner)
    except KeyboardInterrupt:
        if engine is not None:
            engine.abort()
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)

    console.print_results(result.results)
    if not result.ok:
        sys.exit(1)


@cli.command()
@stack_option
@state_option
@context_option
@click.option("--cpu", default=None, help="CPU budget in cores (e.g. 2 or 1500m)")
@click.option("--memory", default=None, help="Memory budget (e.g. 2G)")
@click.pass_context
def validate(ctx, stack, state_dir, context, cpu, memory):
    """Check graphs, build references and resources without starting anything."""
    console = get_console()
    try:
        resolved = _load(stack)
        engine = _engine(state_dir, context)
        build_plan = engine.plan_build(resolved.stages)
        totals = engine.scheduler.validate(resolved.services, _budget(resolved, cpu, memory), build_plan)
    except Exception as e:
        _fail(ctx, e)

    console.print_info(f"OK: {len(resolved.stages)} stage(s), {len(resolved.services)} service(s)")
    console.print_info(f"Declared limits: cpu={totals['cpu']} memory={int(totals['memory'])}")


@cli.command()
@stack_option
@state_option
@context_option
@click.option("--cpu", default=None, help="CPU budget in cores (e.g. 2 or 1500m)")
@click.option("--memory", default=None, help="Memory budget (e.g. 2G)")
@click.option("--workers", default=None, type=int, help="Number of services brought up in parallel")
@click.pass_context
def up(ctx, stack, state_dir, context, cpu, memory, workers):
    """Wait for services in dependency order, gated on their health checks."""
    console = get_console()
    engine = None
    try:
        resolved = _load(stack)
        engine = _engine(state_dir, context, workers)
        build_plan = engine.plan_build(resolved.stages) if resolved.stages else None
        report = engine.up(
            resolved.services,
            _budget(resolved, cpu, memory),
            build_plan=build_plan,
            on_event=lambda ev: console.print_transition(str(ev)),
        )
    except KeyboardInterrupt:
        if engine is not None:
            engine.abort()
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)

    console.print_blocked(report.blocked)
    console.print_results({name: state.value for name, state in report.states.items()})
    if not report.ok:
        sys.exit(1)


@cli.command()
@state_option
@click.argument("stages", nargs=-1, required=True)
def forget(state_dir, stages):
    """Drop recorded fingerprints so the given stages rebuild."""
    store = FingerprintStore(state_dir)
    store.forget(*stages)
    get_console().print_info(f"Forgot {len(stages)} stage(s)")


@cli.command()
@stack_option
@click.option("--output", "-o", default="-", help="Output file (default: stdout)")
@click.pass_context
def export(ctx, stack, output):
    """Write the resolved stack as a JSON document."""
    try:
        resolved = _load(stack)
    except Exception as e:
        _fail(ctx, e)

    text = json.dumps(stack_to_dict(resolved), indent=2, sort_keys=True)
    if output == "-":
        click.echo(text)
    else:
        Path(output).write_text(text + "\n", encoding="utf-8")


if __name__ == "__main__":
    cli()
