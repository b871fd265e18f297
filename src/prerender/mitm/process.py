"""Process management for the mitmdump reverse proxy."""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from prerender.config import PrerenderConfig

logger = logging.getLogger(__name__)


def get_script_path() -> Path:
    """Path of the addon script passed to mitmdump -s."""
    return Path(__file__).parent / "script.py"


def find_mitmdump() -> Path | None:
    """Locate mitmdump, preferring the one installed next to this interpreter.

    Returns:
        Path to mitmdump, or None if it is not installed
    """
    venv_mitmdump = Path(sys.executable).parent / "mitmdump"
    if venv_mitmdump.exists():
        return venv_mitmdump

    found = shutil.which("mitmdump")
    return Path(found) if found else None


def build_command(
    mitmdump: Path,
    config: PrerenderConfig,
    port: int | None = None,
    upstream_app: str | None = None,
    args: list[str] | None = None,
) -> list[str]:
    """Build the mitmdump command line for reverse proxy mode.

    Args:
        mitmdump: Path to the mitmdump binary
        config: Prerender configuration
        port: Listen port (defaults to mitm.port)
        upstream_app: Application URL (defaults to mitm.upstream_app)
        args: Additional arguments passed through to mitmdump

    Returns:
        Command as an argument list
    """
    listen_port = port if port is not None else config.mitm.port
    target = upstream_app or config.mitm.upstream_app

    cmd = [
        str(mitmdump),
        "--mode",
        f"reverse:{target}",
        "--listen-port",
        str(listen_port),
        "-s",
        str(get_script_path()),
    ]
    if config.mitm.keep_host_header:
        cmd.extend(["--set", "keep_host_header=true"])
    if args:
        cmd.extend(args)
    return cmd


def run_mitmdump(cmd: list[str], config_dir: Path) -> int:
    """Run mitmdump in the foreground until it exits.

    Args:
        cmd: Command built by build_command()
        config_dir: Configuration directory exported as PRERENDER_CONFIG_DIR

    Returns:
        mitmdump's exit code
    """
    # The addon script discovers prerender.yaml through this variable
    env = os.environ.copy()
    env["PRERENDER_CONFIG_DIR"] = str(config_dir.absolute())

    logger.info("Starting mitmdump: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, env=env)
    except KeyboardInterrupt:
        logger.info("mitmdump interrupted")
        return 130
    return result.returncode
