"""Command-line interface for gemini_prefork."""

import argparse
import logging
import signal
import sys
from dataclasses import replace

from pubsub import pub

from .client import GeminiClient
from .config import Config, load_config
from .core import GeminiError
from .prefork import TOPIC_WORKER_EXITED, PreforkServer
from .providers import StaticFileHandler
from .server import GeminiServer


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="gemini-prefork",
        description="Gemini protocol server and client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve -r ~/gemini-content          # Serve a directory
  %(prog)s serve -c config.yaml -w 8          # 8 worker processes
  %(prog)s fetch gemini://example.org/        # Fetch a page
  %(prog)s fetch --no-redirect gemini://h/a   # Show a redirect as-is
""",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Serve a directory over Gemini")
    serve.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to YAML configuration file",
    )
    serve.add_argument(
        "-r", "--root",
        metavar="DIR",
        help="Root directory for gemini content",
    )
    serve.add_argument("--host", help="Address to bind")
    serve.add_argument("--port", type=int, help="Port to bind")
    serve.add_argument("--cert", metavar="FILE", help="Server certificate (PEM)")
    serve.add_argument("--key", metavar="FILE", help="Server private key (PEM)")
    serve.add_argument(
        "-w", "--workers",
        type=int,
        metavar="N",
        help="Worker processes (1 serves in-process)",
    )

    fetch = commands.add_parser("fetch", help="Fetch a gemini:// URL")
    fetch.add_argument("url", help="URL to fetch")
    fetch.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to YAML configuration file",
    )
    fetch.add_argument(
        "--no-redirect",
        action="store_true",
        help="Do not follow redirects",
    )
    fetch.add_argument("--max-redirects", type=int, metavar="N", help="Redirect limit")
    fetch.add_argument("--cert", metavar="FILE", help="Client certificate (PEM)")
    fetch.add_argument("--key", metavar="FILE", help="Client private key (PEM)")

    return parser.parse_args(argv)


def _load(args: argparse.Namespace, logger: logging.Logger) -> Config | None:
    if not args.config:
        return Config()
    try:
        return load_config(args.config)
    except FileNotFoundError:
        logger.error(f"Config file not found: {args.config}")
        return None


def _report_worker_exit(pid: int, status: int | None) -> None:
    """Log workers that died on their own; SIGTERM exits are shutdown."""
    if status in (0, -signal.SIGTERM):
        return
    logger = logging.getLogger(__name__)
    logger.error(f"Worker {pid} died unexpectedly (exit code {status})")


def serve(args: argparse.Namespace) -> int:
    """Run the server subcommand."""
    logger = logging.getLogger(__name__)

    config = _load(args, logger)
    if config is None:
        return 1

    # Override config with command line arguments
    overrides = {
        "root_directory": args.root,
        "host": args.host,
        "port": args.port,
        "cert_file": args.cert,
        "key_file": args.key,
        "workers": args.workers,
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})

    # Validate root directory
    root_path = config.get_root_path()
    if not root_path.exists():
        logger.error(f"Content directory does not exist: {root_path}")
        logger.info("Create the directory and add some content, or specify a different path with -r")
        return 1

    if not root_path.is_dir():
        logger.error(f"Content path is not a directory: {root_path}")
        return 1

    handler = StaticFileHandler(root_path, index_file=config.index_file)

    logger.info("Starting Gemini server...")
    logger.info(f"  Content directory: {root_path}")
    logger.info(f"  Address: {config.host}:{config.port}")
    logger.info(f"  Workers: {config.workers}")

    if config.workers > 1:
        pub.subscribe(_report_worker_exit, TOPIC_WORKER_EXITED)
        try:
            return PreforkServer(handler, config).run()
        finally:
            pub.unsubscribe(_report_worker_exit, TOPIC_WORKER_EXITED)

    server = GeminiServer(handler, config)

    def signal_handler(sig, frame):
        logger.info("Shutdown signal received")
        server.stop()
        server.close()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        server.serve_forever()
    except GeminiError as e:
        logger.error(f"Server error: {e}")
        return 1
    return 0


def fetch(args: argparse.Namespace) -> int:
    """Run the fetch subcommand."""
    logger = logging.getLogger(__name__)

    config = _load(args, logger)
    if config is None:
        return 1

    if args.max_redirects is not None:
        config = replace(config, max_redirects=args.max_redirects)
    if args.cert and args.key:
        config = replace(config, client_cert_file=args.cert, client_key_file=args.key)

    client = GeminiClient(
        max_redirects=config.max_redirects,
        client_cert=config.client_cert(),
    )

    try:
        if args.no_redirect:
            response = client.request_no_redirect(args.url)
        else:
            response = client.request(args.url)

        with response:
            print(f"{response.status} {response.meta}", file=sys.stderr)
            if not response.is_success():
                return 1
            for chunk in response.iter_body():
                sys.stdout.buffer.write(chunk)
            sys.stdout.buffer.flush()
    except (GeminiError, OSError) as e:
        logger.error(f"Request failed: {e}")
        return 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "serve":
        return serve(args)
    return fetch(args)


if __name__ == "__main__":
    sys.exit(main())
