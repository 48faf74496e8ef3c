"""Command-line interface for httprunner.

Loads the configuration, applies command-line overrides, validates the
startup material (command, credentials, TLS files) and serves the
endpoint with uvicorn.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

EPILOG = "The endpoints are /run, /ls, /kill, and /die."


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httprunner",
        description="Run a preconfigured command over HTTP(S)",
        epilog=EPILOG,
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/httprunner.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument("--host", type=str, default=None, help="Listening hostname")
    parser.add_argument("--port", type=int, default=None, help="Listening port")
    parser.add_argument("--command", type=str, default=None, help="The command to run")
    parser.add_argument(
        "--rate", type=str, default=None,
        help="Limit process creation to no more than one per given duration "
             "(e.g. 1s, 500ms). Set to 0 for no limit.",
    )
    parser.add_argument(
        "--userpass", type=str, default=None,
        help="Optional username:password protection",
    )
    parser.add_argument("--cert", type=Path, default=None, help="TLS certificate file")
    parser.add_argument("--key", type=Path, default=None, help="TLS private key file")
    parser.add_argument(
        "--no-tls", action="store_true",
        help="Serve plain HTTP instead of HTTPS",
    )
    return parser


def _apply_overrides(data: dict, args: argparse.Namespace) -> None:
    """Merge command-line flags into a settings dump."""
    server = data.setdefault("server", {})
    runner = data.setdefault("runner", {})
    for flag, section, name in (
        ("host", server, "host"),
        ("port", server, "port"),
        ("userpass", server, "userpass"),
        ("cert", server, "cert_file"),
        ("key", server, "key_file"),
        ("command", runner, "command"),
        ("rate", runner, "rate"),
    ):
        value = getattr(args, flag)
        if value is not None:
            section[name] = value
    if args.no_tls:
        server["tls"] = False


def _check_tls_files(*paths: Path) -> list[str]:
    problems = []
    for path in paths:
        if not path.is_file() or not os.access(path, os.R_OK):
            problems.append(f"cannot read {path}")
    return problems


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the httprunner CLI."""
    args = parse_args(argv)

    from pydantic import ValidationError

    from httprunner.config.settings import Settings, load_settings
    from httprunner.utils.logging import setup_logging

    try:
        settings = load_settings(args.config)
        data = settings.model_dump()
        data["server"]["userpass"] = settings.server.userpass.get_secret_value()
        _apply_overrides(data, args)
        if args.verbose:
            data["logging"]["level"] = "DEBUG"
        settings = Settings.model_validate(data)
    except ValidationError as e:
        print(f"httprunner: invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)

    if not settings.runner.argv:
        build_parser().error("No command to run")

    setup_logging(settings.logging)

    srv = settings.server
    if srv.tls:
        problems = _check_tls_files(srv.cert_file, srv.key_file)
        if problems:
            for problem in problems:
                logger.error("TLS setup failed: %s", problem)
            sys.exit(1)

    import uvicorn

    from httprunner.endpoint.auth import BasicAuth
    from httprunner.endpoint.server import SERVER_ID, create_app

    userpass = srv.userpass.get_secret_value()
    run = settings.runner
    app = create_app(
        command=run.command,
        auth=BasicAuth(userpass) if userpass else None,
        rate=run.rate,
        capture_limit=run.capture_limit,
        stderr_limit=run.stderr_limit,
        echo_output=run.echo_output,
        max_duration=run.max_duration,
        idle_timeout=run.idle_timeout,
        exit_delay=run.exit_delay,
    )

    config = uvicorn.Config(
        app,
        host=srv.host,
        port=srv.port,
        ssl_certfile=str(srv.cert_file) if srv.tls else None,
        ssl_keyfile=str(srv.key_file) if srv.tls else None,
        log_config=None,
        log_level=settings.logging.level.lower(),
        server_header=False,
        headers=[("Server", SERVER_ID)],
    )
    server = uvicorn.Server(config)

    def _request_exit() -> None:
        server.should_exit = True

    app.state.on_die = _request_exit

    logger.info(
        "Serving %s on %s://%s:%d",
        run.command, "https" if srv.tls else "http", srv.host, srv.port,
    )
    server.run()


if __name__ == "__main__":
    main()
