"""
Serve static files in front of a dynamic application.

Requests that match one of the static rules are served from disk, everything
else falls through to ``dynamic_app``.

> curl http://localhost:8080/static/style.css
> curl http://localhost:8080/hello
"""

from staticroute import Application, Response, StaticServer, Status, middleware
from staticroute.app.base import send_response


class HelloApplication(Application):
    def handle(self, request, send_status):
        response = Response(
            Status.OK, {"Content-Type": "text/plain"}, f"Hello from {request.path}\n"
        )
        return send_response(response, send_status)


dynamic_app = HelloApplication()

app = middleware({"static": {"/static": "/var/www/"}}, next_app=dynamic_app)


if __name__ == "__main__":
    server = StaticServer(app, port=8080)
    server.run()
