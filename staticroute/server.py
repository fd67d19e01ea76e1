from __future__ import annotations

import socket
import sys
import time
import typing

from twisted.internet import reactor as _reactor
from twisted.internet.endpoints import TCP4ServerEndpoint, TCP6ServerEndpoint
from twisted.internet.tcp import Port
from twisted.protocols.haproxy import proxyEndpoint
from twisted.web.server import Request, Site

from staticroute.__version__ import __version__
from staticroute.app.base import ApplicationCallable
from staticroute.protocol import ApplicationResource

if sys.stderr.isatty():
    CYAN = "\033[36m\033[1m"
    RESET = "\033[0m"
else:
    CYAN = ""
    RESET = ""


ABOUT = rf"""
{CYAN}     _        _   _                    _
 ___| |_ __ _| |_(_) ___ _ __ ___  _   _| |_ ___
/ __| __/ _` | __| |/ __| '__/ _ \| | | | __/ _ \
\__ \ || (_| | |_| | (__| | | (_) | |_| | ||  __/
|___/\__\__,_|\__|_|\___|_|  \___/ \__,_|\__\___|{RESET}

Static file routing by hostname and path, v{__version__}
"""


class StaticServer(Site):
    """
    Wrapper around twisted's HTTP site that handles most of the setup and
    plumbing for you.

    Every request is handed to ``app``, usually a StaticDispatcher.
    """

    TIMESTAMP_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

    resource_class = ApplicationResource

    def __init__(
        self,
        app: ApplicationCallable,
        reactor: typing.Any = _reactor,
        host: str = "127.0.0.1",
        port: int = 8080,
        hostname: str = "localhost",
        proxy_protocol: bool = False,
    ):
        super().__init__(self.resource_class(self, app), reactor=reactor)

        self.app = app
        self.reactor = reactor
        self.host = host
        self.port = port
        self.hostname = hostname
        self.proxy_protocol = proxy_protocol

    def log_access(self, message: str) -> None:
        """
        Log standard "access log"-type information.
        """
        print(message, file=sys.stdout)

    def log_message(self, message: str) -> None:
        """
        Log special messages like startup info or a traceback error.
        """
        print(message, file=sys.stderr)

    def log(self, request: Request) -> None:
        """
        Log an HTTP request using a format derived from the Common Log Format.

        This is invoked by twisted once the request has finished.
        """
        environ = getattr(request, "app_environ", {})
        url = environ.get("ORIGINAL_REQUEST_URI") or request.uri.decode("latin-1")
        message = '{} [{}] "{} {}" {} {} {}'.format(
            request.getClientAddress().host,
            time.strftime(self.TIMESTAMP_FORMAT, time.localtime()),
            request.method.decode("latin-1"),
            url,
            request.code,
            request.sentLength,
            environ.get("STATIC_RULE", "-"),
        )
        self.log_access(message)

    def on_bind_interface(self, port: Port) -> None:
        """
        Log when the server binds to an interface.
        """
        sock_ip, sock_port, *_ = port.socket.getsockname()
        if port.addressFamily == socket.AF_INET:
            self.log_message(f"Listening on {sock_ip}:{sock_port}")
        else:
            self.log_message(f"Listening on [{sock_ip}]:{sock_port}")

    def bind_interface(self, interface: str) -> None:
        """
        Binds the server to a twisted interface.
        """
        if ":" in interface:
            endpoint = TCP6ServerEndpoint(self.reactor, self.port, interface=interface)
        else:
            endpoint = TCP4ServerEndpoint(self.reactor, self.port, interface=interface)

        if self.proxy_protocol:
            endpoint = proxyEndpoint(endpoint)  # type: ignore

        endpoint.listen(self).addCallback(self.on_bind_interface)

    def initialize(self) -> None:
        """
        Install the server into the twisted reactor.
        """
        interfaces = [self.host] if self.host else ["0.0.0.0", "::"]
        for interface in interfaces:
            self.bind_interface(interface)

    def run(self) -> None:
        """
        This is the main server loop.
        """
        self.log_message(ABOUT)
        self.log_message(f"Server hostname is {self.hostname}")
        if self.proxy_protocol:
            self.log_message("PROXY protocol is enabled")
        self.initialize()
        self.reactor.run()
