from __future__ import annotations

import dataclasses
import re
import typing
from urllib.parse import unquote, urlsplit

from twisted.internet.defer import Deferred

EnvironDict = typing.Dict[str, object]
HeaderDict = typing.Dict[str, str]
ResponseType = typing.Union[str, bytes, Deferred]
ApplicationResponse = typing.Iterable[ResponseType]
WriteStatusCallable = typing.Callable[[int, HeaderDict], None]
ApplicationCallable = typing.Callable[
    [EnvironDict, WriteStatusCallable],
    typing.Union[ApplicationResponse, Deferred],
]


class Status:
    """
    HTTP response status codes used by the server.
    """

    OK = 200

    MOVED_PERMANENTLY = 301
    NOT_MODIFIED = 304

    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405

    INTERNAL_SERVER_ERROR = 500


class Request:
    """
    Object that encapsulates information about a single HTTP request.

    The ``url`` attribute holds the request target (path and query string)
    exactly as it was received. It is the only field that the static
    dispatcher is allowed to change, see ``rewrite()``.
    """

    environ: EnvironDict
    method: str
    url: str
    hostname: str
    port: typing.Optional[int]
    path: str
    query: str

    def __init__(self, environ: EnvironDict):
        self.environ = environ
        self.method = typing.cast(str, environ.get("REQUEST_METHOD", "GET"))

        host = typing.cast(str, environ.get("HTTP_HOST") or "")
        # Parse the Host header as the authority component of a URL so that
        # IPv6 literals and explicit ports are split the same way.
        host_parts = urlsplit(f"//{host}")
        hostname = host_parts.hostname or ""

        # Convert domain names to punycode for compatibility with URLs that
        # contain encoded IDNs (follows RFC 3490).
        self.hostname = hostname.encode("idna").decode("ascii")
        self.port = host_parts.port

        self._set_url(typing.cast(str, environ["REQUEST_URI"]))

    def _set_url(self, url: str) -> None:
        if not url.startswith("/"):
            raise ValueError(f"Invalid request target: {url!r}")

        # A leading "//" belongs to the path, it is never a netloc here
        path, _, query = url.partition("?")
        self.url = url
        self.path = unquote(path, errors="strict")
        self.query = query

    def rewrite(self, url: str) -> None:
        """
        Replace the request target in-place.

        The first target that the request was received with is preserved in
        the environ under ``ORIGINAL_REQUEST_URI``.
        """
        self.environ.setdefault("ORIGINAL_REQUEST_URI", self.url)
        if not url.startswith("/"):
            url = "/" + url
        self._set_url(url)


@dataclasses.dataclass
class Response:
    """
    Object that encapsulates information about a single HTTP response.
    """

    status: int
    headers: HeaderDict = dataclasses.field(default_factory=dict)
    body: typing.Union[None, ResponseType, ApplicationResponse] = None


@dataclasses.dataclass(frozen=True)
class RouteMatch:
    """
    The capture groups produced by matching a request against a pattern.
    """

    host_match: typing.Optional[re.Match]
    path_match: typing.Optional[re.Match]

    @property
    def groups(self) -> typing.Tuple[typing.Optional[str], ...]:
        """
        Numbered captures, host groups first and then path groups.
        """
        groups: typing.Tuple[typing.Optional[str], ...] = ()
        if self.host_match:
            groups += self.host_match.groups()
        if self.path_match:
            groups += self.path_match.groups()
        return groups

    def group(self, name: str) -> typing.Optional[str]:
        """
        Look up a named capture, preferring the path over the host.

        Raises KeyError if neither pattern defines a group with this name.
        """
        for match in (self.path_match, self.host_match):
            if match and name in match.re.groupindex:
                return match.group(name)
        raise KeyError(name)


@dataclasses.dataclass(frozen=True)
class RoutePattern:
    """
    A pattern for matching requests by hostname, port and URL path.

    Both ``hostname`` and ``path`` are regular expressions that must match
    the full value. A value of ``None`` matches anything. The ``port`` is not
    checked against the request, it scopes the pattern to a listening port
    when a dispatch table is built.
    """

    hostname: typing.Optional[str] = None
    path: typing.Optional[str] = None
    port: typing.Optional[int] = None

    def match(self, request: Request) -> typing.Optional[RouteMatch]:
        """
        Check if the given request matches this route pattern.
        """
        host_match = None
        if self.hostname is not None:
            host_match = re.fullmatch(self.hostname, request.hostname, re.IGNORECASE)
            if not host_match:
                return None

        path_match = None
        if self.path is not None:
            path_match = re.fullmatch(self.path, request.path)
            if not path_match:
                return None

        return RouteMatch(host_match, path_match)


class Application:
    """
    Base application class.

    Parses the environ into a ``Request`` and hands it to ``handle()``.
    Subclasses override ``handle()`` and may return either a response body
    iterable or a deferred that fires with one.
    """

    def __call__(
        self, environ: EnvironDict, send_status: WriteStatusCallable
    ) -> typing.Union[ApplicationResponse, Deferred]:
        try:
            request = Request(environ)
        except Exception:
            send_status(Status.BAD_REQUEST, {"Content-Type": "text/plain"})
            return [b"Bad Request"]

        return self.handle(request, send_status)

    def handle(
        self, request: Request, send_status: WriteStatusCallable
    ) -> typing.Union[ApplicationResponse, Deferred]:
        response = self.default_callback(request)
        return send_response(response, send_status)

    def default_callback(self, request: Request) -> Response:
        """
        Set the error response for requests that nothing else handled.
        """
        return Response(
            Status.NOT_FOUND, {"Content-Type": "text/plain"}, b"Not Found"
        )


class NotFoundApplication(Application):
    """
    Terminal application that answers every request with a 404.
    """


def send_response(
    response: Response, send_status: WriteStatusCallable
) -> ApplicationResponse:
    """
    Write the response status line and convert the body into an iterable.
    """
    send_status(response.status, response.headers)

    if isinstance(response.body, (bytes, str, Deferred)):
        return [response.body]
    elif response.body:
        return response.body
    return []
