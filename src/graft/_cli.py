import logging
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

import click

import graft
from graft.config import TransplantConfig
from graft.event import Event
from graft.event import TransplantEvent
from graft.exception import ApplyConflict
from graft.exception import TransplantError
from graft.exception import UnresolvedConflict
from graft.transplant.engine import Transplanter
from graft.transplant.executor import Committed
from graft.transplant.filter import Drop
from graft.transplant.state import TransplantState

EXIT_FATAL = 1
EXIT_CONFLICT = 3


@contextmanager
def timer():
    """Context manager to measure the execution time of a code block."""
    start = end = perf_counter()
    yield lambda: end - start
    end = perf_counter()


@contextmanager
def transplanter(config: Path):
    """Open the repositories named by *config* and translate transplant
    errors into exit codes.
    """
    TransplantEvent.handler(
        "commit-applied", "commit-skipped", "conflict-resolved"
    )(report)
    try:
        with Transplanter.open(TransplantConfig.from_file(config)) as engine:
            yield engine
    except (ApplyConflict, UnresolvedConflict) as e:
        click.echo(str(e), err=True)
        click.echo(
            "Resolve the paths in the target working tree, stage them with "
            "`git add` and run `graft resume`.",
            err=True,
        )
        raise click.exceptions.Exit(EXIT_CONFLICT) from e
    except TransplantError as e:
        click.echo(f"error: {e}", err=True)
        raise click.exceptions.Exit(EXIT_FATAL) from e
    finally:
        Event.unregister(report)


def report(event, timestamp, context=None):
    """Echo the progress of a run, one line per processed commit."""
    match event.type:
        case "commit-applied" | "conflict-resolved" if event.target:
            click.echo(f"applied {event.source[:7]} as {event.target[:7]}")
        case "commit-skipped" | "conflict-resolved":
            reason = event.reason or "nothing to commit"
            click.echo(f"skipped {event.source[:7]} ({reason})")


def debug(ctx, param, value):
    """
    Enable debugging with debugpy.

    :param ctx: Click context.
    :param param: Click parameter.
    :param value: Port the debugger listens on, if any.
    """
    if not value or ctx.resilient_parsing:
        return

    import debugpy

    debugpy.listen(value)
    click.echo("Waiting for debugger to attach...", err=True)
    debugpy.wait_for_client()
    click.echo("Debugger attached", err=True)


def summarize(state: TransplantState, elapsed: float | None = None) -> str:
    applied = sum(entry.target is not None for entry in state.done)
    summary = f"{applied} commit(s) applied, {len(state.done) - applied} skipped"
    if elapsed is not None:
        summary = f"{summary} in {elapsed:.2f}s"
    return summary


config_argument = click.argument(
    "config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)

yes_option = click.option(
    "--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation."
)


@click.group()
@click.option(
    "--debug",
    "-d",
    callback=debug,
    expose_value=False,
    help="Run with debugger listening on the specified port. Execution will block until the debugger is attached.",
    is_eager=True,
    type=int,
)
@click.option(
    "--verbosity",
    "-v",
    count=True,
    help="Verbosity level for logging.",
    type=int,
)
@click.version_option(graft.__version__, "--version", "-V")
def cli(verbosity: int):
    """Copy a filtered range of commits from one git repository onto
    another, resumably.
    """
    match verbosity:
        case 0:
            graft.__log_level__ = logging.WARNING
        case 1:
            graft.__log_level__ = logging.INFO
        case _:
            graft.__log_level__ = logging.DEBUG

    logging.getLogger().setLevel(graft.__log_level__)
    logging.debug(f"Set log level to {logging.getLevelName(graft.__log_level__)}")


@cli.command()
@config_argument
@yes_option
def run(config, yes):
    """Plan and start a transplant described by CONFIG."""
    with transplanter(config) as engine:
        if (state := engine.state) is not None:
            click.echo(
                f"A transplant is already in progress: {len(state.done)} processed, "
                f"{len(state.queue)} queued."
            )
            if not yes:
                click.confirm("Resume it?", abort=True)
            with timer() as t:
                state = engine.resume()
            click.echo(f"Done: {summarize(state, t())}")
            return

        plan = engine.plan()
        kept = 0
        for commit, decision in plan:
            if isinstance(decision, Drop):
                click.echo(
                    f"drop {commit.short_id} {commit.summary} ({decision.reason})"
                )
            else:
                kept += 1
                click.echo(f"keep {commit.short_id} {commit.summary}")
        if not plan:
            click.echo("Nothing to transplant.")
            return
        if not yes:
            click.confirm(
                f"Transplant {kept} of {len(plan)} commit(s) onto "
                f"{engine.target.path}?",
                abort=True,
            )
        with timer() as t:
            state = engine.start()
        click.echo(f"Done: {summarize(state, t())}")


@cli.command()
@config_argument
def resume(config):
    """Continue the transplant of CONFIG after a conflict or a crash."""
    with transplanter(config) as engine:
        with timer() as t:
            state = engine.resume()
        click.echo(f"Done: {summarize(state, t())}")


@cli.command()
@config_argument
def status(config):
    """Show the persisted progress of CONFIG's transplant."""
    with transplanter(config) as engine:
        state = engine.state
        if state is None:
            click.echo("No transplant in progress.")
            return
        click.echo(f"source:    {state.source_path}")
        click.echo(f"target:    {state.target_path}")
        click.echo(f"range:     {state.since or '(root)'}..{state.until}")
        click.echo(f"processed: {len(state.done)}")
        click.echo(f"queued:    {len(state.queue)}")
        if state.last_processed:
            click.echo(f"last:      {state.last_processed}")
        if (pending := state.pending_conflict) is not None:
            click.echo(f"conflict:  {pending.commit}")
            for path in pending.paths:
                click.echo(f"  {path}")


@cli.command()
@config_argument
@yes_option
def abort(config, yes):
    """Discard the persisted progress of CONFIG's transplant."""
    with transplanter(config) as engine:
        if not yes:
            click.confirm(
                "Discard the transplant state? Commits already applied stay.",
                abort=True,
            )
        state = engine.abort()
        click.echo(f"Aborted after {summarize(state)}.")


@cli.command()
@config_argument
@click.option(
    "--ref",
    "-r",
    type=str,
    default=None,
    help="Source commit to copy; defaults to the configured until_ref.",
)
@yes_option
def bootstrap(config, ref, yes):
    """Make the target tree equal to a source tree in a single commit."""
    with transplanter(config) as engine:
        if not yes:
            click.confirm(
                f"Replace the tree of {engine.target.path} with the source tree "
                f"at {ref or engine.until}?",
                abort=True,
            )
        outcome = engine.bootstrap(ref)
        if isinstance(outcome, Committed):
            click.echo(f"Bootstrapped as {outcome.target}")
        else:
            click.echo("Target already matches the source tree.")
