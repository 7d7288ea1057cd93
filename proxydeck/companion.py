"""
ProxyDeck companion - CLI entry point.
Provides start, stop, and status subcommands.
"""

import argparse
import logging
import os
import signal
import subprocess
import sys

from .__version__ import __repository__, __version__
from .constants import DATA_DIR, DEFAULT_COMPANION_PORT, LOCALHOST, PID_FILE

BANNER = f"""\
  ProxyDeck v{__version__}
  {__repository__}
  Companion API at http://localhost:{{port}}  (docs: /docs)
"""


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_pid_file() -> int | None:
    """Read PID from the PID file, returning None if corrupt or missing."""
    if not os.path.exists(PID_FILE):
        return None
    try:
        with open(PID_FILE, encoding="utf-8") as f:
            return int(f.read().strip())
    except (ValueError, OSError):
        return None


def _write_pid_file(pid: int) -> None:
    os.makedirs(DATA_DIR, exist_ok=True)
    with open(PID_FILE, "w", encoding="utf-8") as f:
        f.write(str(pid))


def _remove_pid_file() -> None:
    if os.path.exists(PID_FILE):
        os.remove(PID_FILE)


def _run_server(args) -> None:
    import uvicorn

    from .companion_api import create_app
    from .service import CompanionService

    service = CompanionService.from_disk(sidecar_binary=args.sidecar)
    app = create_app(service, autostart=not args.no_autostart)
    uvicorn.run(app, host=LOCALHOST, port=args.port, log_level="warning")


def _serve_command(args) -> list[str]:
    """Command line that re-invokes this module as the background server."""
    cmd = [sys.executable, "-m", "proxydeck.companion"]
    if args.verbose:
        cmd.append("-v")
    cmd += ["_serve", "--port", str(args.port)]
    if args.sidecar:
        cmd += ["--sidecar", args.sidecar]
    if args.no_autostart:
        cmd.append("--no-autostart")
    return cmd


def cmd_serve(args):
    """Internal: run the server in-process (used by --background)."""
    _run_server(args)


def cmd_start(args):
    """Start the companion server."""
    old_pid = _read_pid_file()
    if old_pid is not None:
        try:
            os.kill(old_pid, 0)
            print(f"ProxyDeck already running (PID {old_pid}) at http://localhost:{args.port}")
            return
        except OSError:
            _remove_pid_file()

    if args.background:
        proc = subprocess.Popen(  # pylint: disable=consider-using-with
            _serve_command(args),
            creationflags=subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        _write_pid_file(proc.pid)
        print(f"ProxyDeck started in background (PID {proc.pid})")
        print(BANNER.format(port=args.port))
        return

    # Foreground - write PID for status checks, run directly
    _write_pid_file(os.getpid())
    try:
        print(BANNER.format(port=args.port))
        _run_server(args)
    finally:
        _remove_pid_file()


def cmd_stop(_args):
    """Stop the background companion server (which stops the sidecar)."""
    pid = _read_pid_file()
    if pid is None:
        print("ProxyDeck is not running (no PID file found).")
        return

    try:
        if sys.platform == "win32":
            subprocess.run(["taskkill", "/F", "/PID", str(pid)], capture_output=True, check=False)
        else:
            os.kill(pid, signal.SIGTERM)
        print(f"ProxyDeck stopped (PID {pid}).")
    except OSError as e:
        print(f"Could not stop process {pid}: {e}")
    finally:
        _remove_pid_file()


def cmd_status(_args):
    """Check if the companion server is running."""
    pid = _read_pid_file()
    if pid is None:
        print("ProxyDeck is not running.")
        return

    try:
        os.kill(pid, 0)
        print(f"ProxyDeck is running (PID {pid})")
    except OSError:
        print("ProxyDeck PID file exists but process is not running. Cleaning up.")
        _remove_pid_file()


def _add_server_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--port",
        type=int,
        default=DEFAULT_COMPANION_PORT,
        help=f"Port for the companion API (default: {DEFAULT_COMPANION_PORT})",
    )
    p.add_argument("--sidecar", help="Path to the CLIProxyAPI binary (default: $PROXYDECK_SIDECAR or PATH)")
    p.add_argument(
        "--no-autostart", action="store_true", help="Do not start the sidecar on launch"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxydeck",
        description="ProxyDeck - supervise CLIProxyAPI and track its usage",
        epilog=(
            "Examples:\n"
            "  proxydeck start                      Start in foreground\n"
            "  proxydeck start --background         Start as background process\n"
            "  proxydeck start --sidecar ./cliproxyapi --no-autostart\n"
            "  proxydeck stop                       Stop the background server\n"
            "  proxydeck status                     Check if server is running\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    start_p = sub.add_parser("start", help="Start the companion server")
    _add_server_options(start_p)
    start_p.add_argument(
        "--background", "-b", action="store_true", help="Run as a background process (detached)"
    )

    sub.add_parser("stop", help="Stop the background companion server")
    sub.add_parser("status", help="Check if the companion server is running")

    serve_p = sub.add_parser("_serve", help=argparse.SUPPRESS)
    _add_server_options(serve_p)
    return parser


def main(argv=None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    _configure_logging(args.verbose)
    {
        "start": cmd_start,
        "_serve": cmd_serve,
        "stop": cmd_stop,
        "status": cmd_status,
    }[args.command](args)


if __name__ == "__main__":
    main()
