"""
Route requests to static file servers by hostname and path.

A dispatch table is built once from the ``static`` section of the server
configuration. Each rule maps a key like ``"*.example.com/images/*"`` to a
serving root and a rewrite template:

    {
        "static": {
            "example.com": "/var/www/example",
            "*.example.com/images/*": {
                "path": "/var/www/images",
                "target": "/[1]/[2]",
            },
        },
    }

For every request the first matching rule is selected, the request target is
rewritten through the template and the file server bound to the rule serves
the result. When the file server can't find the file, ``/404.html`` from the
same root is served with a 404 status instead.
"""
from __future__ import annotations

import dataclasses
import re
import typing
from urllib.parse import quote

from twisted.internet.defer import Deferred, ensureDeferred

from staticroute.app.base import (
    ApplicationCallable,
    ApplicationResponse,
    Application,
    NotFoundApplication,
    Request,
    Response,
    RouteMatch,
    RoutePattern,
    Status,
    WriteStatusCallable,
    send_response,
)
from staticroute.app.static import ServeError, StaticFileServer

PATH_PLACEHOLDER = "[path]"
FALLBACK_PATH = "/404.html"

KEY_RE = re.compile(r"(?P<host>[^:/]*)(?::(?P<port>[0-9]+))?(?P<path>/.*)?")
PLACEHOLDER_RE = re.compile(
    r"\[(?:(?P<index>[0-9]+)|(?P<name>[A-Za-z_][A-Za-z0-9_]*))\]"
)


@dataclasses.dataclass(frozen=True)
class RouteEntry:
    """
    A resolved rule: the file server for its root and the rewrite template.
    """

    server: StaticFileServer
    target: str = PATH_PLACEHOLDER


def parse_key(key: typing.Union[str, RoutePattern]) -> RoutePattern:
    """
    Normalize a rule key into a route pattern.

    Keys have the form ``[host][:port][/path]``. A ``*`` in the host or path
    matches any run of characters and becomes a numbered capture group. A
    path without any ``*`` matches itself and everything below it.
    """
    if isinstance(key, RoutePattern):
        return key

    match = KEY_RE.fullmatch(key.strip())
    if not match:
        raise ValueError(f"Invalid static rule key: {key!r}")

    host, port, path = match.group("host", "port", "path")

    host_pattern = None
    if host and host != "*":
        host = host.lower().encode("idna").decode("ascii")
        host_pattern = "(.*?)".join(re.escape(part) for part in host.split("*"))

    path_pattern = None
    if path and path != "/":
        if "*" in path:
            path_pattern = "(.*)".join(re.escape(part) for part in path.split("*"))
        else:
            path_pattern = re.escape(path.rstrip("/")) + "(?:/.*)?"

    return RoutePattern(
        hostname=host_pattern,
        path=path_pattern,
        port=int(port) if port else None,
    )


def parse_entry(
    entry: typing.Any,
    index_file: str = "index.html",
    cache: typing.Optional[int] = 3600,
) -> RouteEntry:
    """
    Resolve a raw configuration entry into a file server and a template.

    The entry is either the root directory as a string, or a mapping with
    an optional ``path`` (the root directory) and an optional ``target``
    (the rewrite template). A mapping without a ``path`` is used as the root
    itself, which the file server will refuse at serve time.
    """
    if isinstance(entry, str):
        root, target = entry, PATH_PLACEHOLDER
    elif isinstance(entry, typing.Mapping):
        root = entry.get("path") or entry
        target = entry.get("target") or PATH_PLACEHOLDER
    else:
        raise ValueError(f"Invalid static rule entry: {entry!r}")

    if not isinstance(target, str):
        raise ValueError(f"Invalid static rule target: {target!r}")

    server = StaticFileServer(root, index_file=index_file, cache=cache)
    return RouteEntry(server, target)


def rewrite_url(
    template: str,
    original_url: str,
    route_match: typing.Optional[RouteMatch] = None,
) -> str:
    """
    Build the request target that will be served from a rewrite template.

    Every ``[path]`` is replaced by the original request target, and
    ``[1]``, ``[2]``... are replaced by the numbered captures (host groups
    come before path groups) and ``[name]`` by named captures. Captures are
    percent-encoded before they are inserted. Placeholders that don't refer
    to any capture are left alone.
    """
    groups = route_match.groups if route_match else ()

    def substitute(match: re.Match) -> str:
        if match.group(0) == PATH_PLACEHOLDER:
            return original_url
        if route_match is None:
            return match.group(0)
        if match.group("index") is not None:
            index = int(match.group("index"))
            if not 1 <= index <= len(groups):
                return match.group(0)
            value = groups[index - 1]
        else:
            try:
                value = route_match.group(match.group("name"))
            except KeyError:
                return match.group(0)
        return quote(value or "", safe="/")

    # One pass over the template, so the inserted request target is never
    # scanned for placeholders itself.
    return PLACEHOLDER_RE.sub(substitute, template)


class DispatchTable:
    """
    An ordered, read-only collection of static rules.

    Rules whose key names a port are only installed when the table is built
    for that same port. Lookups walk the rules in configuration order and
    return the first one that matches.
    """

    rules: typing.Tuple[typing.Tuple[RoutePattern, str, RouteEntry], ...]

    def __init__(
        self,
        config: typing.Mapping[typing.Any, typing.Any],
        port: typing.Optional[int] = None,
        entry_parser: typing.Callable[[typing.Any], RouteEntry] = parse_entry,
    ):
        self.port = port

        rules = []
        seen: typing.Dict[RoutePattern, str] = {}
        for key, entry in config.items():
            pattern = parse_key(key)
            if pattern.port is not None and port is not None and pattern.port != port:
                continue
            if pattern in seen:
                raise ValueError(
                    f"Static rule {key!r} duplicates rule {seen[pattern]!r}"
                )
            seen[pattern] = str(key)
            rules.append((pattern, str(key), entry_parser(entry)))

        self.rules = tuple(rules)

    def __len__(self) -> int:
        return len(self.rules)

    def match(
        self, request: Request
    ) -> typing.Optional[typing.Tuple[str, RouteEntry, RouteMatch]]:
        """
        Find the first rule that matches the request.
        """
        for pattern, key, entry in self.rules:
            route_match = pattern.match(request)
            if route_match:
                return key, entry, route_match
        return None


class StaticDispatcher(Application):
    """
    Application that serves static files according to a dispatch table.

    Requests that don't match any rule are passed on to ``next_app``
    untouched.
    """

    def __init__(
        self,
        table: DispatchTable,
        next_app: typing.Optional[ApplicationCallable] = None,
    ):
        self.table = table
        self.next_app = next_app or NotFoundApplication()

    def handle(
        self, request: Request, send_status: WriteStatusCallable
    ) -> Deferred:
        def next_app() -> typing.Union[ApplicationResponse, Deferred]:
            return self.next_app(request.environ, send_status)

        return ensureDeferred(self.dispatch(request, send_status, next_app))

    async def dispatch(
        self,
        request: Request,
        send_status: WriteStatusCallable,
        next_app: typing.Callable[[], typing.Union[ApplicationResponse, Deferred]],
    ) -> ApplicationResponse:
        result = self.table.match(request)
        if result is None:
            response = next_app()
            if isinstance(response, Deferred):
                response = await response
            return response

        key, entry, route_match = result
        request.environ["STATIC_RULE"] = key
        request.rewrite(rewrite_url(entry.target, request.url, route_match))

        response = await self.serve(entry.server, request)
        return send_response(response, send_status)

    async def serve(self, server: StaticFileServer, request: Request) -> Response:
        """
        Serve the request, falling back to the 404 page if it's not found.

        Errors other than a 404 are returned the way the file server itself
        reports them.
        """
        try:
            return await server.serve(request)
        except ServeError as e:
            if e.status == Status.NOT_FOUND:
                return await self.serve_fallback(server, request)
            return server.error_response(e)

    async def serve_fallback(
        self, server: StaticFileServer, request: Request
    ) -> Response:
        """
        Serve the 404 page from the same root, or an empty 500 without one.
        """
        try:
            return await server.serve_file(
                FALLBACK_PATH, Status.NOT_FOUND, {}, request
            )
        except (ServeError, OSError):
            return Response(
                Status.INTERNAL_SERVER_ERROR, {"Content-Type": "text/plain"}, b""
            )


def middleware(
    config: typing.Mapping[str, typing.Any],
    next_app: typing.Optional[ApplicationCallable] = None,
    entry_parser: typing.Callable[[typing.Any], RouteEntry] = parse_entry,
) -> typing.Optional[StaticDispatcher]:
    """
    Build the static dispatcher for a server configuration.

    Returns None if the configuration doesn't define any static rules, in
    which case there is nothing to install.
    """
    if not config.get("static"):
        return None

    table = DispatchTable(
        config["static"], port=config.get("port"), entry_parser=entry_parser
    )
    return StaticDispatcher(table, next_app)
