"""
Beam File: command line entry point.

Sends a file through beam, receives files from beam (print, save or
forward them), or runs the HTTP tunnel that sends files on behalf of
local services.
"""

import argparse
import asyncio
import json
import logging
import os

import uvicorn
from pydantic import ValidationError

from api.app import create_app
from config import (
    DEFAULT_BEAM_URL,
    DEFAULT_BIND_ADDR,
    SHUTDOWN_GRACE,
    Config,
    ReceiveConfig,
    SendConfig,
    ServerConfig,
)
from relay.context import AppContext
from relay.naming import DEFAULT_NAMING
from relay.receiver import receive_files
from relay.sender import send_path

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _json_arg(value: str):
    try:
        return json.loads(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not valid JSON: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    p = argparse.ArgumentParser(prog="beam-file", description="Send and receive files through beam.")
    p.add_argument("--beam-url", default=env.get("BEAM_URL", DEFAULT_BEAM_URL),
                   help="Url of the local beam proxy, which needs sockets enabled")
    p.add_argument("--beam-secret", default=env.get("BEAM_SECRET"), help="Beam api key")
    p.add_argument("--beam-id", default=env.get("BEAM_ID"),
                   help="App id of this application: <app>.<proxy>.<broker>")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="command", required=True)

    send = sub.add_parser("send", help="Send a file")
    send.add_argument("file", help="File to send, or '-' to read from stdin")
    send.add_argument("--to", required=True,
                      help="Receiving app without broker id, e.g. app1.proxy2")
    send.add_argument("--name",
                      help="Filename to suggest to the receiver (defaults to the sent file's name)")
    send.add_argument("--meta", type=_json_arg, help="Additional JSON metadata for the file")

    receive = sub.add_parser("receive", help="Receive files from other beam-file instances")
    receive.add_argument("-n", "--count", type=int, default=None, help="Only receive this many files")
    sinks = receive.add_subparsers(dest="sink", required=True)
    sinks.add_parser("print", help="Write received files to stdout")
    save = sinks.add_parser("save", help="Save received files to a directory")
    save.add_argument("-o", "--outdir", required=True, help="Directory files are written to")
    save.add_argument("-p", "--naming", default=DEFAULT_NAMING,
                      help="Naming scheme: %%f sending app (app1.proxy2), %%t unix timestamp, "
                           "%%n suggested name (default: %(default)s)")
    callback = sinks.add_parser("callback", help="POST received files to a url")
    callback.add_argument("url", help="Endpoint called for every received file")

    server = sub.add_parser("server", help="Run the HTTP tunnel for sending files")
    server.add_argument("--bind-addr", default=env.get("BIND_ADDR", DEFAULT_BIND_ADDR))
    server.add_argument("--api-key", default=env.get("API_KEY"),
                        help="Api key required for uploading files")
    server.add_argument("--max-transfers", type=int, default=None,
                        help="Refuse new uploads while this many are in flight")
    server.add_argument("--shutdown-grace", type=float, default=SHUTDOWN_GRACE,
                        help="Seconds running uploads get to finish on shutdown")
    return p


def _mode_from_args(args: argparse.Namespace) -> dict:
    if args.command == "send":
        return {"command": "send", "to": args.to, "file": args.file,
                "name": args.name, "meta": args.meta}
    if args.command == "receive":
        if args.sink == "save":
            sink = {"kind": "save", "outdir": args.outdir, "naming": args.naming}
        elif args.sink == "callback":
            sink = {"kind": "callback", "url": args.url}
        else:
            sink = {"kind": "print"}
        return {"command": "receive", "sink": sink, "count": args.count}
    return {"command": "server", "bind_addr": args.bind_addr, "api_key": args.api_key,
            "max_transfers": args.max_transfers, "shutdown_grace": args.shutdown_grace}


def parse_config(argv: list[str] | None = None) -> tuple[Config, argparse.Namespace]:
    """Parse the command line into a validated ``Config``. Exits with status 2 on bad input."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.beam_secret:
        parser.error("--beam-secret (or BEAM_SECRET) is required")
    if not args.beam_id:
        parser.error("--beam-id (or BEAM_ID) is required")
    if args.command == "server" and not args.api_key:
        parser.error("--api-key (or API_KEY) is required")

    try:
        config = Config.model_validate({
            "beam": {
                "beam_url": args.beam_url,
                "beam_secret": args.beam_secret,
                "beam_id": args.beam_id,
            },
            "mode": _mode_from_args(args),
        })
    except ValidationError as e:
        parser.error(str(e))
    return config, args


async def serve(ctx: AppContext, config: ServerConfig) -> None:
    app = create_app(ctx, config)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
        timeout_graceful_shutdown=int(config.shutdown_grace),
    ))
    await server.serve()


async def run(config: Config) -> None:
    ctx = AppContext.from_settings(config.beam)
    try:
        mode = config.mode
        if isinstance(mode, SendConfig):
            await send_path(ctx.beam, ctx.beam_id, mode)
        elif isinstance(mode, ReceiveConfig):
            await receive_files(ctx, mode)
        elif isinstance(mode, ServerConfig):
            await serve(ctx, mode)
    finally:
        await ctx.aclose()


def main(argv: list[str] | None = None) -> int:
    config, args = parse_config(argv)

    # --- Logging ---
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Shutting down")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.error(f"Failure: {e}", exc_info=args.verbose)
        return EXIT_FAILURE
    return EXIT_OK


def cli() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    cli()
