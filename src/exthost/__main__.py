"""CLI entry point: `exthost` status summary and `exthost plugin <command>` management."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from prompt_toolkit import prompt as pt_prompt
from rich.console import Console
from rich.markdown import Markdown
from rich.text import Text

from . import __version__
from .core.config import load_config
from .core.log import setup_logging
from .core.utils import short_path

console = Console()

STATE_STYLES = {
    "active": "green",
    "installed": "yellow",
    "discovered": "dim",
    "orphaned": "red",
}


# ── Helpers ─────────────────────────────────────────────────────────


def _pop_option(args: list[str], *names: str, default: str | None = None) -> str | None:
    """Remove `--name value` from args and return value."""
    for i, a in enumerate(args):
        if a in names and i + 1 < len(args):
            value = args[i + 1]
            del args[i : i + 2]
            return value
    return default


def _pop_flag(args: list[str], *names: str) -> bool:
    for name in names:
        if name in args:
            args.remove(name)
            return True
    return False


def _print_error(result) -> None:
    err = result.error
    console.print(f"error: {err.message}", style="bold red", markup=False)
    for detail in getattr(err, "errors", []):
        console.print(f"  - {detail}", style="red", markup=False)
    console.print(f"  [dim]{err.code} ({err.status})[/dim]")


def _finish(result, message: str | None = None) -> None:
    if not result.ok:
        _print_error(result)
        sys.exit(1)
    if message:
        console.print(message)


def _read_payload(raw: str):
    """JSON text, or @path to a JSON file."""
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text(encoding="utf-8")
    return json.loads(raw)


def _build_runtime(config):
    from .plugins import ExtensionRuntime

    return ExtensionRuntime.from_config(config)


# ── Plugin CLI subcommands ───────────────────────────────────────────


def _handle_plugin_cli() -> None:
    """Handle `exthost plugin list/info/install/uninstall/activate/deactivate/...`."""
    args = sys.argv[2:]
    content_root = _pop_option(args, "--content-root")
    database = _pop_option(args, "--db")
    verbose = _pop_flag(args, "--verbose", "-v")
    if not args:
        _plugin_usage()
        return

    sub = args[0]
    rest = args[1:]
    config = load_config(content_root=content_root, database=database, verbose=verbose)
    setup_logging(verbose)
    runtime = _build_runtime(config)

    if sub == "list":
        result = runtime.list(refresh=True)
        _finish(result)
        if not result.data:
            console.print(f"no extensions found in {short_path(config.plugin_dir)}", style="dim")
            return
        for ext in result.data:
            style = STATE_STYLES.get(ext["state"], "")
            err = f" [red]({ext['error']})[/red]" if ext.get("error") else ""
            ver = f"v{ext['version']}" if ext.get("version") else ""
            console.print(
                f"  [bold]{ext['slug']}[/bold]  {ver}  [{style}]{ext['state']}[/{style}]{err}"
                f"  [dim]{ext.get('description', '')}[/dim]"
            )

    elif sub == "info":
        if not rest:
            console.print("usage: exthost plugin info <slug>", style="dim")
            return
        result = runtime.get(rest[0])
        _finish(result)
        _print_info(result.data)

    elif sub == "install":
        if not rest:
            console.print("usage: exthost plugin install <slug>", style="dim")
            return
        result = runtime.install(rest[0])
        _finish(result)
        console.print(f"installed [bold]{rest[0]}[/bold] v{result.data['version']}")

    elif sub in ("uninstall", "remove", "rm"):
        yes = _pop_flag(rest, "--yes", "-y")
        if not rest:
            console.print("usage: exthost plugin uninstall <slug> [--yes]", style="dim")
            return
        if not yes:
            console.print(
                f"[bold yellow]Uninstall {rest[0]}?[/bold yellow] "
                "[dim]its settings and stored data are deleted[/dim]"
            )
            answer = pt_prompt("Continue? [y/N] ").strip().lower()
            if answer not in ("y", "yes"):
                console.print("cancelled", style="dim")
                return
        _finish(runtime.uninstall(rest[0]), f"uninstalled [bold]{rest[0]}[/bold]")

    elif sub in ("activate", "enable"):
        if not rest:
            console.print("usage: exthost plugin activate <slug>", style="dim")
            return
        _finish(runtime.activate(rest[0]), f"activated [bold]{rest[0]}[/bold]")

    elif sub in ("deactivate", "disable"):
        if not rest:
            console.print("usage: exthost plugin deactivate <slug>", style="dim")
            return
        _finish(runtime.deactivate(rest[0]), f"deactivated [bold]{rest[0]}[/bold]")

    elif sub == "settings":
        if len(rest) < 2:
            console.print("usage: exthost plugin settings <slug> <json | @file>", style="dim")
            return
        try:
            payload = _read_payload(rest[1])
        except (json.JSONDecodeError, OSError) as e:
            console.print(f"error: cannot read settings: {e}", style="bold red", markup=False)
            sys.exit(1)
        result = runtime.update_settings(rest[0], payload)
        _finish(result, f"updated settings of [bold]{rest[0]}[/bold]")
        console.print_json(data=result.data["settings"])

    elif sub == "endpoints":
        if not rest:
            console.print("usage: exthost plugin endpoints <slug>", style="dim")
            return
        result = runtime.get_api_endpoints(rest[0])
        _finish(result)
        if not result.data:
            console.print(f"{rest[0]} declares no endpoints", style="dim")
        for endpoint in result.data:
            console.print(f"  {endpoint}")

    elif sub == "call":
        method = _pop_option(rest, "--method", "-X", default="GET")
        raw_input = _pop_option(rest, "--input", "-d")
        if len(rest) < 2:
            console.print(
                "usage: exthost plugin call <slug> <endpoint> [--method M] [--input JSON]", style="dim"
            )
            return
        try:
            payload = _read_payload(raw_input) if raw_input else None
        except (json.JSONDecodeError, OSError) as e:
            console.print(f"error: cannot read input: {e}", style="bold red", markup=False)
            sys.exit(1)
        result = runtime.call_api(rest[0], rest[1], method=method, input=payload)
        _finish(result)
        if result.data is not None:
            console.print_json(data=result.data, default=str)

    elif sub == "validate":
        target = Path(rest[0] if rest else ".").resolve()
        result = runtime.validate(target)
        if result.ok:
            console.print("[green]extension is valid[/green]")
        else:
            for e in result.error.message.split("; "):
                console.print(f"  [red]error:[/red] {e}")
            sys.exit(1)

    elif sub == "audit":
        limit = _pop_option(rest, "--limit", "-n", default="20")
        if not limit.isdigit():
            console.print("usage: exthost plugin audit [--limit N]", style="dim")
            return
        result = runtime.audit_log(limit=int(limit))
        _finish(result)
        if not result.data:
            console.print("audit log is empty", style="dim")
        for event in result.data:
            slug = event["details"].get("slug", "")
            actor = f"  [dim]by {event['actor']}[/dim]" if event["actor"] else ""
            console.print(
                f"  [dim]{event['timestamp']}[/dim]  [bold]{event['action']}[/bold]  {slug}{actor}"
            )

    elif sub == "boot":
        result = runtime.boot()
        _finish(result)
        for slug in result.data["loaded"]:
            console.print(f"  [green]loaded[/green] {slug}")
        for slug, message in result.data["failed"].items():
            console.print(f"  [red]failed[/red] {slug}: {message}", markup=False)

    else:
        _plugin_usage()


def _print_info(data: dict) -> None:
    style = STATE_STYLES.get(data["state"], "")
    title = Text()
    title.append(data.get("name") or data["slug"], style="bold")
    if data.get("version"):
        title.append(f"  v{data['version']}", style="dim")
    title.append("  ")
    title.append(data["state"], style=style)
    console.print(title)
    if data.get("error"):
        console.print(f"  error: {data['error']}", style="red", markup=False)
    if data.get("description"):
        console.print(f"  {data['description']}", markup=False)
    if data.get("author"):
        console.print(f"  [dim]author:[/dim] {data['author']}")
    for key in ("dependencies", "hooks", "api_endpoints"):
        if data.get(key):
            console.print(f"  [dim]{key}:[/dim] {', '.join(data[key])}")
    if data.get("requires"):
        reqs = ", ".join(f"{k} {v}" for k, v in data["requires"].items())
        console.print(f"  [dim]requires:[/dim] {reqs}")
    if data.get("settings_schema"):
        console.print("  [dim]settings:[/dim]")
        current = data.get("settings") or {}
        for name, spec in data["settings_schema"].items():
            req = " (required)" if spec.get("required") else ""
            value = f" = {json.dumps(current[name])}" if name in current else ""
            console.print(f"    {name}: {spec['type']}{req}{value}", markup=False)
    if data.get("readme"):
        console.print()
        console.print(Markdown(data["readme"]))


def _plugin_usage() -> None:
    console.print("usage: exthost plugin <command> [--content-root DIR] [--db FILE] [-v]", style="dim")
    console.print()
    console.print("  [bold]list[/bold]          List discovered and installed extensions")
    console.print("  [bold]info[/bold]          Show an extension's manifest, state and README")
    console.print("  [bold]install[/bold]       Install an extension found in the content root")
    console.print("  [bold]uninstall[/bold]     Remove an extension and its data")
    console.print("  [bold]activate[/bold]      Activate an installed extension")
    console.print("  [bold]deactivate[/bold]    Deactivate without removing")
    console.print("  [bold]settings[/bold]      Replace an extension's settings")
    console.print("  [bold]endpoints[/bold]     List an active extension's API endpoints")
    console.print("  [bold]call[/bold]          Call an API endpoint")
    console.print("  [bold]validate[/bold]      Validate an extension directory")
    console.print("  [bold]audit[/bold]         Show recent audit events")
    console.print("  [bold]boot[/bold]          Run load hooks of active extensions")
    console.print()
    console.print("examples:", style="dim")
    console.print("  exthost plugin install notify", style="dim")
    console.print('  exthost plugin settings notify \'{"webhook_url": "https://example.com"}\'', style="dim")
    console.print("  exthost plugin call notify send --method POST --input '{\"text\": \"hi\"}'", style="dim")


# ── CLI entry point ─────────────────────────────────────────────────


@click.command()
@click.option("--content-root", default=None, help="Directory holding extension folders")
@click.option("--db", default=None, help="SQLite database file")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def _click_main(content_root: str | None, db: str | None, verbose: bool):
    """exthost: extension runtime status."""
    config = load_config(content_root=content_root, database=db, verbose=verbose)
    setup_logging(verbose)
    runtime = _build_runtime(config)

    result = runtime.list(refresh=True)
    _finish(result)
    entries = result.data
    counts = {state: 0 for state in STATE_STYLES}
    for ext in entries:
        counts[ext["state"]] = counts.get(ext["state"], 0) + 1

    info = Text("  ")
    info.append(f"exthost v{__version__}", style="bold")
    info.append("  ")
    info.append(short_path(config.plugin_dir))
    info.append("  ")
    info.append(short_path(config.db_path), style="dim")
    console.print(info)
    console.print(
        f"  {len(entries)} extension(s): "
        + ", ".join(f"[{STATE_STYLES[s]}]{counts[s]} {s}[/{STATE_STYLES[s]}]" for s in STATE_STYLES)
    )
    console.print("  run `exthost plugin` for management commands", style="dim")


def main():
    """True entry point. Intercepts `plugin` subcommands before click."""
    if len(sys.argv) > 1 and sys.argv[1] == "plugin":
        _handle_plugin_cli()
        return
    _click_main()


if __name__ == "__main__":
    main()
