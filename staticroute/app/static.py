import hashlib
import mimetypes
import os
import pathlib
import typing
import urllib.parse

from twisted.internet.defer import Deferred, maybeDeferred
from twisted.web.http import datetimeToString, stringToDatetime

from staticroute.app.base import HeaderDict, Request, Response, Status


class ServeError(Exception):
    """
    Raised when a file server could not produce a successful response.

    The ``status`` field classifies the failure, e.g. 404 for a missing file.
    """

    def __init__(
        self,
        status: int,
        message: str,
        headers: typing.Optional[HeaderDict] = None,
    ):
        super().__init__(status, message)
        self.status = status
        self.message = message
        self.headers = headers or {}

    def __str__(self) -> str:
        return f"{self.status} {self.message}"


class StaticFileServer:
    """
    Serve files from a static directory over HTTP.

    This is the file-serving capability that sits behind every static rule.
    One instance is bound to one root directory and is shared by every
    request that matches its rule, so it keeps no per-request state.

    The root is not checked when the server is created. A root that does not
    exist (or is not a path at all) makes every request fail with a 404.
    """

    # Chunk size for streaming files, taken from the twisted FileSender class
    CHUNK_SIZE = 2**14

    mimetypes: mimetypes.MimeTypes

    def __init__(
        self,
        root: typing.Any,
        index_file: str = "index.html",
        cache: typing.Optional[int] = 3600,
    ):
        self.root = root
        self.index_file = index_file
        self.cache = cache

        self.mimetypes = mimetypes.MimeTypes()
        # We need to manually load all of the operating system mimetype files
        # https://bugs.python.org/issue38656
        for fn in mimetypes.knownfiles:
            if os.path.isfile(fn):
                self.mimetypes.read(fn)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.root!r})"

    def serve(self, request: Request) -> "Deferred[Response]":
        """
        Serve the file that the request path points to.

        The deferred fails with a ServeError if the file can't be served.
        """
        return maybeDeferred(self.serve_static_file, request)

    def serve_file(
        self,
        path: str,
        status: int,
        headers: HeaderDict,
        request: Request,
    ) -> "Deferred[Response]":
        """
        Serve a single file relative to the root with a fixed status code.

        The deferred fails with a ServeError if the file can't be served.
        """
        return maybeDeferred(self._serve_fixed_file, path, status, headers, request)

    def error_response(self, error: ServeError) -> Response:
        """
        Build the response that the file server sends for its own errors.
        """
        headers = {"Content-Type": "text/plain"}
        headers.update(error.headers)
        return Response(error.status, headers, error.message.encode())

    def resolve_root(self) -> pathlib.Path:
        """
        Return the absolute root directory of the server.
        """
        if not isinstance(self.root, (str, os.PathLike)):
            raise ServeError(Status.NOT_FOUND, "Not Found")

        root = pathlib.Path(self.root)
        try:
            return root.resolve(strict=True)
        except OSError:
            raise ServeError(Status.NOT_FOUND, "Not Found")

    def resolve_path(self, url_path: str) -> pathlib.Path:
        """
        Convert a URL path into a filesystem path inside of the root.
        """
        if "\0" in url_path:
            raise ServeError(Status.FORBIDDEN, "Forbidden")

        filename = pathlib.Path(os.path.normpath(url_path.strip("/") or "."))
        if filename.is_absolute() or str(filename).startswith(".."):
            # Guard against breaking out of the directory
            raise ServeError(Status.FORBIDDEN, "Forbidden")

        return self.resolve_root() / filename

    def serve_static_file(self, request: Request) -> Response:
        """
        Convert the request path into a filesystem path, and attempt to serve
        the file or directory index that is represented at that path.
        """
        if request.method not in ("GET", "HEAD"):
            raise ServeError(
                Status.METHOD_NOT_ALLOWED,
                "Method Not Allowed",
                {"Allow": "GET, HEAD"},
            )

        filesystem_path = self.resolve_path(request.path)

        try:
            if filesystem_path.is_dir():
                if not request.path.endswith("/"):
                    location = urllib.parse.quote(request.path + "/")
                    if request.query:
                        location += "?" + request.query
                    raise ServeError(
                        Status.MOVED_PERMANENTLY,
                        "Moved Permanently",
                        {"Location": location},
                    )
                filesystem_path = filesystem_path / self.index_file
        except (OSError, ValueError):
            # Filename too large, can't be encoded, etc.
            raise ServeError(Status.NOT_FOUND, "Not Found")

        stat = self.stat_file(filesystem_path)
        headers = self.build_headers(filesystem_path, stat)
        if self.is_not_modified(request, headers, stat):
            del headers["Content-Length"]
            return Response(Status.NOT_MODIFIED, headers)

        generator = self.load_file(filesystem_path)
        return Response(Status.OK, headers, generator)

    def _serve_fixed_file(
        self, path: str, status: int, headers: HeaderDict, request: Request
    ) -> Response:
        filesystem_path = self.resolve_path(path)
        stat = self.stat_file(filesystem_path)

        response_headers = self.build_headers(filesystem_path, stat)
        response_headers.update(headers)
        generator = self.load_file(filesystem_path)
        return Response(status, response_headers, generator)

    def stat_file(self, filesystem_path: pathlib.Path) -> os.stat_result:
        """
        Stat a regular, readable file or raise a 404 ServeError.
        """
        try:
            if not filesystem_path.is_file():
                raise ServeError(Status.NOT_FOUND, "Not Found")
            if not os.access(filesystem_path, os.R_OK):
                # File not readable
                raise ServeError(Status.NOT_FOUND, "Not Found")
            return filesystem_path.stat()
        except (OSError, ValueError):
            # Filename too large, can't be encoded, etc.
            raise ServeError(Status.NOT_FOUND, "Not Found")

    def build_headers(
        self, filesystem_path: pathlib.Path, stat: os.stat_result
    ) -> HeaderDict:
        headers = {
            "Content-Type": self.guess_mimetype(filesystem_path.name),
            "Content-Length": str(stat.st_size),
            "Last-Modified": datetimeToString(stat.st_mtime).decode(),
            "ETag": self.make_etag(stat),
        }
        if self.cache is not None:
            headers["Cache-Control"] = f"max-age={self.cache}"
        return headers

    def make_etag(self, stat: os.stat_result) -> str:
        """
        Build a strong validator from the file's inode, size and mtime.
        """
        key = f"{stat.st_ino}-{stat.st_size}-{stat.st_mtime_ns}"
        return '"' + hashlib.md5(key.encode()).hexdigest() + '"'

    def is_not_modified(
        self, request: Request, headers: HeaderDict, stat: os.stat_result
    ) -> bool:
        """
        Evaluate the conditional GET headers sent by the client.
        """
        if_none_match = request.environ.get("HTTP_IF_NONE_MATCH")
        if if_none_match:
            etags = [tag.strip() for tag in str(if_none_match).split(",")]
            return "*" in etags or headers["ETag"] in etags

        if_modified_since = request.environ.get("HTTP_IF_MODIFIED_SINCE")
        if if_modified_since:
            try:
                since = stringToDatetime(str(if_modified_since).encode())
            except (ValueError, IndexError, KeyError):
                return False
            return int(stat.st_mtime) <= since

        return False

    def load_file(self, filesystem_path: pathlib.Path) -> typing.Iterator[bytes]:
        """
        Load a file in chunks to allow streaming to the TCP socket.
        """
        with filesystem_path.open("rb") as fp:
            while True:
                data = fp.read(self.CHUNK_SIZE)
                if not data:
                    break
                yield data

    def guess_mimetype(self, filename: str) -> str:
        """
        Guess the mimetype of a file based on the file extension.
        """
        mimetype, _ = self.mimetypes.guess_type(filename)
        return mimetype or "application/octet-stream"
