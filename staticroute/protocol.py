from __future__ import annotations

import traceback
import typing

from twisted.internet.defer import Deferred, ensureDeferred
from twisted.internet.task import deferLater
from twisted.web.http_headers import Headers
from twisted.web.resource import Resource
from twisted.web.server import NOT_DONE_YET
from twisted.web.server import Request as WebRequest

from .__version__ import __version__
from .app.base import ApplicationCallable, HeaderDict, Status

if typing.TYPE_CHECKING:
    from .server import StaticServer


class RequestHandler:
    """
    Handle a single HTTP request.

    The request handler manages the life of a single HTTP request. It exposes
    a simplified interface to read the request target and headers, and to
    write the response status and body to the transport. The request
    information is stuffed into an ``environ`` dictionary that encapsulates
    the request at a low level. This dictionary, along with a callback to
    write the response status, is passed to a configurable "application"
    function or class.

    HTTP parsing itself is left to twisted.web; this class only bridges a
    parsed ``twisted.web.server.Request`` into the application interface.
    """

    request: WebRequest
    environ: typing.Dict[str, typing.Any]
    disconnected: bool

    def __init__(
        self, server: StaticServer, app: ApplicationCallable, request: WebRequest
    ):
        self.server = server
        self.app = app
        self.request = request
        self.environ = {}
        self.disconnected = False

        request.notifyFinish().addErrback(self.connection_lost)

    def connection_lost(self, reason: typing.Any) -> None:
        """
        This is invoked by twisted if the client goes away before we finish.
        """
        self.disconnected = True

    def handle(self) -> Deferred:
        return ensureDeferred(self._handle_request_noblock())

    async def _handle_request_noblock(self) -> None:
        """
        Handle the HTTP request and write the response to the transport.

        There are two places that we call into the "application" code:

        1. The initial invoking of app(environ, write_callback) which will
           return an iterable.
        2. Every time that we call next() on the iterable to retrieve bytes to
           write to the response body.

        In both of these places, the app can either return the result directly,
        or it can return a "deferred" object. The handler will await on the
        result of the deferred, which yields control of the event loop for
        other requests to be handled concurrently.
        """
        response_generator: typing.Any = None
        try:
            self.environ = self.build_environ()
            response_generator = self.app(self.environ, self.write_status)
            if isinstance(response_generator, Deferred):
                response_generator = await response_generator
            else:
                # Yield control of the event loop
                await deferLater(self.server.reactor, 0)

            for data in response_generator:
                if self.disconnected:
                    break
                if isinstance(data, Deferred):
                    data = await data
                    self.write_body(data)
                else:
                    self.write_body(data)
                    # Yield control of the event loop
                    await deferLater(self.server.reactor, 0)

        except Exception:
            self.server.log_message(traceback.format_exc())
            if not self.request.startedWriting:
                self.reset_headers()
            self.write_status(
                Status.INTERNAL_SERVER_ERROR, {"Content-Type": "text/plain"}
            )
        finally:
            close = getattr(response_generator, "close", None)
            if close is not None:
                close()
            if not self.disconnected:
                self.request.finish()

    def build_environ(self) -> typing.Dict[str, typing.Any]:
        """
        Construct a dictionary that will be passed to the application handler.

        Variable names (mostly) conform to the CGI spec defined in RFC 3875.
        """
        request = self.request
        url = request.uri.decode("latin-1")
        _, _, query = url.partition("?")

        environ = {
            "REQUEST_METHOD": request.method.decode("latin-1"),
            "REQUEST_URI": url,
            "QUERY_STRING": query,
            "REMOTE_ADDR": request.getClientAddress().host,
            "SERVER_NAME": self.server.hostname,
            "SERVER_PORT": self.server.port,
            "SERVER_PROTOCOL": request.clientproto.decode("latin-1"),
            "SERVER_SOFTWARE": f"staticroute/{__version__}",
        }

        for name, values in request.requestHeaders.getAllRawHeaders():
            key = "HTTP_" + name.decode("latin-1").upper().replace("-", "_")
            environ[key] = ",".join(value.decode("latin-1") for value in values)

        # Stash the environ on the request so that the access log can see
        # which rule handled it.
        request.app_environ = environ  # type: ignore[attr-defined]
        return environ

    def write_status(self, status: int, headers: HeaderDict) -> None:
        """
        Set the response status code and headers.

        Nothing is sent until the first chunk of the body is written, so the
        status can be updated as long as no data has been written yet.
        """
        if self.request.startedWriting:
            return

        self.request.setResponseCode(status)
        for name, value in headers.items():
            self.request.setHeader(name, value)

    def reset_headers(self) -> None:
        """
        Drop every response header that the application set.
        """
        headers = Headers()
        for name in (b"server", b"date"):
            values = self.request.responseHeaders.getRawHeaders(name)
            if values:
                headers.setRawHeaders(name, values)
        self.request.responseHeaders = headers

    def write_body(self, data: typing.Union[str, bytes]) -> None:
        """
        Write bytes to the HTTP response body.
        """
        if isinstance(data, str):
            data = data.encode()

        if data:
            self.request.write(data)


class ApplicationResource(Resource):
    """
    A leaf resource that hands every request over to an application.
    """

    isLeaf = True

    def __init__(self, server: StaticServer, app: ApplicationCallable):
        super().__init__()
        self.server = server
        self.app = app

    def render(self, request: WebRequest) -> typing.Any:
        handler = RequestHandler(self.server, self.app, request)
        handler.handle()
        return NOT_DONE_YET
