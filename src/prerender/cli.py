"""prerender CLI for configuring and running the pre-rendering reverse proxy - Tyro implementation."""

import json
import logging
import shutil
import sys
from builtins import print as builtin_print
from pathlib import Path
from typing import Annotated

import attrs
import tyro
from pydantic import ValidationError
from rich import print
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prerender.config import PrerenderConfig, load_config
from prerender.context import RequestDescriptor
from prerender.interceptor import PrerenderInterceptor
from prerender.upstream import UpstreamFetcher, UpstreamUnavailableError


def get_templates_dir() -> Path:
    """Directory holding the bundled configuration templates."""
    return Path(__file__).parent / "templates"


# Subcommand definitions using attrs
@attrs.define
class Install:
    """Install the prerender.yaml configuration template."""

    force: bool = False
    """Overwrite existing configuration."""


@attrs.define
class Start:
    """Start mitmdump as a pre-rendering reverse proxy in front of the application."""

    args: Annotated[list[str] | None, tyro.conf.Positional] = None
    """Additional arguments to pass to mitmdump."""

    port: Annotated[int | None, tyro.conf.arg(aliases=["-p"])] = None
    """Port to listen on (default: mitm.port from prerender.yaml)."""

    upstream: Annotated[str | None, tyro.conf.arg(aliases=["-u"])] = None
    """Application URL to proxy to (default: mitm.upstream_app)."""


@attrs.define
class Check:
    """Show how a request would be classified, and optionally fetch it."""

    url: Annotated[str, tyro.conf.Positional]
    """Absolute URL of the request."""

    user_agent: Annotated[str, tyro.conf.arg(aliases=["-A"])] = ""
    """User-Agent of the request."""

    referer: Annotated[str, tyro.conf.arg(aliases=["-r"])] = ""
    """Referer of the request."""

    forwarded_proto: str = ""
    """X-Forwarded-Proto header value (e.g. https)."""

    application_path: str = "/"
    """Mount path of the application."""

    fetch: Annotated[bool, tyro.conf.arg(aliases=["-f"])] = False
    """Also call the rendering service and show its response."""

    json: Annotated[bool, tyro.conf.arg(aliases=["-j"])] = False
    """Output as JSON."""


@attrs.define
class ShowConfig:
    """Show the effective configuration."""

    json: Annotated[bool, tyro.conf.arg(aliases=["-j"])] = False
    """Output as JSON."""


Command = (
    Annotated[Install, tyro.conf.subcommand(name="install")]
    | Annotated[Start, tyro.conf.subcommand(name="start")]
    | Annotated[Check, tyro.conf.subcommand(name="check")]
    | Annotated[ShowConfig, tyro.conf.subcommand(name="config")]
)


def setup_logging() -> None:
    """Configure logging with 100-character text width."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)-20s - %(levelname)-8s - %(message).100s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def install_config(config_dir: Path, force: bool = False) -> None:
    """Install the prerender.yaml template.

    Args:
        config_dir: Directory to install the configuration file to
        force: Whether to overwrite an existing configuration
    """
    src = get_templates_dir() / "prerender.yaml"
    dst = config_dir / "prerender.yaml"

    if dst.exists() and not force:
        print(f"Configuration {dst} already exists.")
        print("Use --force to overwrite existing configuration.")
        sys.exit(1)

    if not src.exists():
        print(f"[red]Error: Template {src} not found[/red]", file=sys.stderr)
        sys.exit(1)

    config_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)
    print(f"Installed {dst}")
    print("\nNext steps:")
    print(f"  1. Edit {dst} to set your rendering service token and rules")
    print("  2. Start the reverse proxy with: prerender start --upstream http://localhost:3000")


def _load_or_exit(config_dir: Path) -> PrerenderConfig:
    """Load the configuration, exiting with a readable message when it is invalid."""
    try:
        return load_config(config_dir)
    except (ValidationError, ValueError) as e:
        print(f"[red]Invalid configuration in {config_dir}:[/red]\n{escape(str(e))}", file=sys.stderr)
        sys.exit(1)


def start_proxy(config_dir: Path, cmd: Start) -> None:
    """Run mitmdump in reverse mode with the prerender addon.

    Args:
        config_dir: Configuration directory containing prerender.yaml
        cmd: Start subcommand options
    """
    from prerender.mitm.process import build_command, find_mitmdump, run_mitmdump

    # Fail fast on a bad configuration before mitmdump is spawned
    config = _load_or_exit(config_dir)

    mitmdump = find_mitmdump()
    if mitmdump is None:
        print("[red]Error: mitmdump not found. Install mitmproxy in this environment.[/red]", file=sys.stderr)
        sys.exit(1)

    command = build_command(mitmdump, config, port=cmd.port, upstream_app=cmd.upstream, args=cmd.args)
    sys.exit(run_mitmdump(command, config_dir))


def check_request(config_dir: Path, cmd: Check) -> None:
    """Classify a request and print the decision.

    Args:
        config_dir: Configuration directory containing prerender.yaml
        cmd: Check subcommand options
    """
    config = _load_or_exit(config_dir)

    headers: list[tuple[str, str]] = []
    if cmd.user_agent:
        headers.append(("User-Agent", cmd.user_agent))
    if cmd.referer:
        headers.append(("Referer", cmd.referer))
    if cmd.forwarded_proto:
        headers.append(("X-Forwarded-Proto", cmd.forwarded_proto))

    request = RequestDescriptor.from_url(
        cmd.url,
        user_agent=cmd.user_agent,
        referer=cmd.referer,
        headers=headers,
        application_path=cmd.application_path,
    )

    interceptor = PrerenderInterceptor(config)
    decision = interceptor.classifier.explain(request)
    upstream_url = interceptor.upstream_url(request)

    output: dict = {
        "url": cmd.url,
        "intercept": decision.intercept,
        "rule": decision.rule,
        "upstream_url": upstream_url,
    }

    if cmd.fetch and decision.intercept:
        fetcher: UpstreamFetcher = interceptor.fetcher
        try:
            result = fetcher.fetch(upstream_url, request.user_agent)
        except UpstreamUnavailableError as e:
            print(f"[red]Error: {escape(str(e))}[/red]", file=sys.stderr)
            sys.exit(1)
        output["status_code"] = result.status_code
        output["headers"] = {name: list(values) for name, values in result.headers.items()}
        output["body_size"] = len(result.body.encode("utf-8"))

    if cmd.json:
        builtin_print(json.dumps(output, indent=2))
        return

    console = Console()
    table = Table(title="Prerender Decision", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("URL", cmd.url)
    table.add_row("User-Agent", cmd.user_agent or "[dim](blank)[/dim]")
    verdict = "[green]pre-render[/green]" if decision.intercept else "[yellow]pass through[/yellow]"
    table.add_row("Decision", verdict)
    table.add_row("Rule", decision.rule)
    table.add_row("Upstream URL", upstream_url)
    if "status_code" in output:
        table.add_row("Upstream status", str(output["status_code"]))
        table.add_row("Body size", f"{output['body_size']} bytes")
        for name, values in output["headers"].items():
            for value in values:
                table.add_row(f"  {name}", value)
    console.print(table)


def show_config(config_dir: Path, json_output: bool = False) -> None:
    """Print the effective configuration.

    Args:
        config_dir: Configuration directory containing prerender.yaml
        json_output: Print JSON instead of a table
    """
    config = _load_or_exit(config_dir)
    data = config.model_dump(mode="json", exclude={"token"})
    data["token"] = "set" if config.token else None
    data["user_agents"] = list(config.user_agents)
    data["ignored_extensions"] = list(config.ignored_extensions)

    if json_output:
        builtin_print(json.dumps(data, indent=2))
        return

    console = Console()
    table = Table(title="Prerender Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value)
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


def main(
    cmd: Annotated[Command, tyro.conf.arg(name="")],
    *,
    config_dir: Annotated[Path | None, tyro.conf.arg(help="Configuration directory")] = None,
) -> None:
    """prerender - serve pre-rendered pages to crawlers.

    Classifies each request by user agent and URL rules, and relays pages
    from a rendering service (such as prerender.io) to crawlers.
    """
    if config_dir is None:
        config_dir = Path.home() / ".prerender"

    # Setup logging with 100-character text width
    setup_logging()

    # Handle each command type
    if isinstance(cmd, Install):
        install_config(config_dir, force=cmd.force)

    elif isinstance(cmd, Start):
        start_proxy(config_dir, cmd)

    elif isinstance(cmd, Check):
        check_request(config_dir, cmd)

    elif isinstance(cmd, ShowConfig):
        show_config(config_dir, json_output=cmd.json)


def entry_point() -> None:
    """Entry point for the prerender command."""
    tyro.cli(main)


if __name__ == "__main__":
    entry_point()
