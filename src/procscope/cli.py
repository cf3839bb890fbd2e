"""CLI commands for procscope."""

import json
from pathlib import Path

import click

_SNAPSHOT_OPTION = click.option(
    "--snapshot",
    "-s",
    "snapshot_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read processes from a JSON snapshot instead of the live system",
)
_VERBOSE_OPTION = click.option(
    "--verbose", "-v", is_flag=True, help="Echo diagnostics (duplicate pids, bad rules)"
)


def _setup(verbose: bool):
    """Load config, configure logging and build the pipeline. Exits on bad config."""
    from procscope import logging as pslog
    from procscope.config import Config
    from procscope.pipeline import ViewBuilder

    try:
        config = Config.load()
        pslog.configure(config, verbose=verbose)
        builder = ViewBuilder.from_config(config)
    except ValueError as e:
        pslog.config_error(str(e))
        raise SystemExit(1) from e

    catalog = builder.enricher.catalog
    if verbose:
        pslog.catalog_loaded(len(catalog), len(catalog.diagnostics))
    for diag in catalog.diagnostics:
        pslog.rule_problem(diag.index, diag.name, diag.reason)
    return config, builder


def _read_snapshot(snapshot_path: Path | None, include_env: bool, verbose: bool):
    from procscope import logging as pslog
    from procscope.snapshot import collect_records, load_snapshot

    if snapshot_path is None:
        return collect_records(include_env=include_env), []

    try:
        records, containers = load_snapshot(snapshot_path)
    except ValueError as e:
        pslog.config_error(str(e))
        raise SystemExit(1) from e
    if verbose:
        pslog.snapshot_loaded(str(snapshot_path), len(records), len(containers))
    return records, containers


@click.group()
@click.version_option()
def main() -> None:
    """Label, nest and group running processes by project."""
    pass


@main.command()
@_SNAPSHOT_OPTION
@click.option("--json", "as_json", is_flag=True, help="Print the forest as JSON")
@click.option("--no-pid", is_flag=True, help="Hide process ids")
@click.option("--env", "include_env", is_flag=True, help="Collect environment variables")
@_VERBOSE_OPTION
def tree(
    snapshot_path: Path | None, as_json: bool, no_pid: bool, include_env: bool, verbose: bool
) -> None:
    """Show the labeled process tree."""
    from procscope.formatting import render_tree

    _, builder = _setup(verbose)
    records, containers = _read_snapshot(snapshot_path, include_env, verbose)
    view = builder.refresh(records, containers)

    if as_json:
        click.echo(json.dumps([node.to_dict() for node in view.forest], indent=2))
        return

    for line in render_tree(list(view.forest), show_pid=not no_pid):
        click.echo(line)


@main.command()
@_SNAPSHOT_OPTION
@click.option("--json", "as_json", is_flag=True, help="Print groups as JSON")
@click.option("--members", "-m", is_flag=True, help="List member processes")
@_VERBOSE_OPTION
def projects(snapshot_path: Path | None, as_json: bool, members: bool, verbose: bool) -> None:
    """Show processes grouped by project."""
    from procscope.formatting import format_group
    from procscope.tree import flatten

    _, builder = _setup(verbose)
    records, containers = _read_snapshot(snapshot_path, False, verbose)
    view = builder.refresh(records, containers)

    if as_json:
        click.echo(json.dumps([group.to_dict() for group in view.groups], indent=2))
        return

    if not view.groups:
        click.echo("No project groups found.")
        return

    labels = {node.pid: node.label for node in flatten(view.forest)}
    for group in view.groups:
        click.echo(format_group(group))
        if members:
            for pid in sorted(group.pids):
                click.echo(f"    {pid:>7}  {labels.get(pid, '?')}")
            for name in group.containers:
                click.echo(f"    {'docker':>7}  {name}")


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.argument("argv", nargs=-1, type=click.UNPROCESSED)
@click.option("--cwd", default=None, help="Working directory")
@click.option("--listen-port", type=int, multiple=True, help="Listening port (repeatable)")
@click.option("--env", "env_pairs", multiple=True, help="KEY=VALUE (repeatable)")
def label(
    name: str,
    argv: tuple[str, ...],
    cwd: str | None,
    listen_port: tuple[int, ...],
    env_pairs: tuple[str, ...],
) -> None:
    """Resolve the label for a hypothetical process.

    Example: procscope label python3 -- python3 -m uvicorn app:main --port 8080
    """
    from procscope.models import ProcessRecord

    _, builder = _setup(verbose=False)

    env = None
    if env_pairs:
        env = {}
        for pair in env_pairs:
            key, sep, value = pair.partition("=")
            if not sep:
                raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
            env[key] = value

    record = ProcessRecord(
        pid=0,
        ppid=0,
        name=name,
        argv=argv or (name,),
        cwd=cwd,
        env=env,
        listening_ports=listen_port,
    )
    result = builder.enricher.enrich(record)
    click.echo(result.label)
    click.echo(f"icon: {result.icon}  rule: {result.rule_name or '(none)'}")


@main.command()
@click.option("--check", is_flag=True, help="Exit non-zero if any rule was skipped")
def rules(check: bool) -> None:
    """List the effective enrichment rules in match order."""
    _, builder = _setup(verbose=False)
    catalog = builder.enricher.catalog

    click.echo(f"{'#':>3}  {'Name':20}  {'Icon':10}  {'Match':40}  Template")
    click.echo("-" * 100)
    for i, rule in enumerate(catalog):
        click.echo(
            f"{i:>3}  {rule.name[:20]:20}  {rule.icon:10}  {rule.describe()[:40]:40}  "
            f"{rule.template}"
        )

    if check and catalog.diagnostics:
        raise SystemExit(1)


@main.command()
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--env", "include_env", is_flag=True, help="Collect environment variables")
def snapshot(output: Path, include_env: bool) -> None:
    """Save a live process snapshot as JSON."""
    from procscope import logging as pslog
    from procscope.snapshot import collect_records, save_snapshot

    _setup(verbose=False)
    records = collect_records(include_env=include_env)
    save_snapshot(output, records)
    pslog.snapshot_saved(str(output), len(records))


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from procscope.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo(f"Rules file: {cfg.rules_path}")
    click.echo()
    click.echo("[enrichment]")
    click.echo(f"  include_builtin_rules = {cfg.enrichment.include_builtin_rules}")
    click.echo(f"  default_icon = {cfg.enrichment.default_icon}")
    click.echo(f"  port_suffix = {cfg.enrichment.port_suffix}")
    click.echo()
    click.echo("[tree]")
    click.echo(f"  root_pids = {cfg.tree.root_pids}")
    click.echo()
    click.echo("[projects]")
    click.echo(f"  marker_files = {', '.join(cfg.projects.marker_files)}")
    click.echo(f"  ignored_directories = {', '.join(cfg.projects.ignored_directories)}")
    click.echo(f"  ceiling_directories = {', '.join(cfg.projects.ceiling_directories)}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from procscope import logging as pslog
    from procscope.config import Config

    cfg = Config.load()

    if not cfg.config_path.exists():
        cfg.save()
        pslog.config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from procscope.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
