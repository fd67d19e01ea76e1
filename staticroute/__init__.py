# ruff: noqa: F401
from .__version__ import __version__
from .app.base import (
    Application,
    NotFoundApplication,
    Request,
    Response,
    RouteMatch,
    RoutePattern,
    Status,
)
from .app.dispatch import (
    DispatchTable,
    RouteEntry,
    StaticDispatcher,
    middleware,
    parse_entry,
    parse_key,
    rewrite_url,
)
from .app.static import ServeError, StaticFileServer
from .protocol import ApplicationResource, RequestHandler
from .server import StaticServer

__title__ = "Static Route Server"
