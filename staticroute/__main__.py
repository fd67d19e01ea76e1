"""
Main entry point for running ``staticroute`` from the command line.

This will launch an HTTP server running the StaticDispatcher application.
"""
# Black does not do a good job of formatting argparse code, IMHO.
# fmt: off
import argparse
import functools
import sys

from .__version__ import __version__
from .app.dispatch import middleware, parse_entry
from .config import check_config, load_config, merge_rules
from .server import StaticServer

if sys.version_info < (3, 7):
    sys.exit("Fatal Error: staticroute requires Python 3.7+")


# noinspection PyTypeChecker
parser = argparse.ArgumentParser(
    prog="staticroute",
    description="Serve static files routed by hostname and path",
    formatter_class=argparse.ArgumentDefaultsHelpFormatter,
)
parser.add_argument(
    "-V", "--version",
    action="version",
    version="staticroute " + __version__
)
group = parser.add_argument_group("server configuration")
group.add_argument(
    "--host",
    help="Server address to bind to",
    default="127.0.0.1"
)
group.add_argument(
    "--port",
    help="Server port to bind to [default: 8080, or the port in --config]",
    type=int,
)
group.add_argument(
    "--hostname",
    help="Server hostname",
    default="localhost"
)
group.add_argument(
    "--proxy-protocol",
    help="Expect the HAProxy PROXY protocol header on every connection",
    action="store_true",
    dest="proxy_protocol",
)
group = parser.add_argument_group("static routing configuration")
group.add_argument(
    "--config",
    help="JSON file with a \"static\" mapping of rules and an optional \"port\"",
    metavar="FILE",
)
group.add_argument(
    "--static",
    help="Serve ROOT for requests matching PATTERN, optionally rewriting "
         "the path through TARGET (may be repeated)",
    action="append",
    nargs="+",
    default=[],
    metavar="PATTERN ROOT [TARGET]",
    dest="rules",
)
group.add_argument(
    "--index-file",
    help="File to serve when a directory is requested",
    default="index.html",
    metavar="FILE",
    dest="index_file",
)
group.add_argument(
    "--cache",
    help="Value for the Cache-Control max-age header, in seconds",
    type=int,
    default=3600,
    metavar="SECONDS",
)


def main():
    args = parser.parse_args()

    try:
        config = load_config(args.config) if args.config else check_config({})
        config = merge_rules(config, args.rules, port=args.port)
        if config.get("port") is None:
            config["port"] = 8080
        entry_parser = functools.partial(
            parse_entry, index_file=args.index_file, cache=args.cache
        )
        app = middleware(config, entry_parser=entry_parser)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    if app is None:
        parser.error("no static rules configured, use --static or --config")

    server = StaticServer(
        app=app,
        host=args.host,
        port=config["port"],
        hostname=args.hostname,
        proxy_protocol=args.proxy_protocol,
    )
    server.log_message(f"Loaded {len(app.table)} static rule(s)")
    server.run()


if __name__ == "__main__":
    main()
