"""
A server that serves static files for several domains.

This is a basic example of how you can route requests by hostname and path to
different directories, and rewrite the path before the file is looked up.

> curl -H "Host: www.example.com" http://localhost:8080/
> curl -H "Host: alice.users.example.com" http://localhost:8080/
> curl -H "Host: cdn.example.com" http://localhost:8080/images/logo.png

The same rules can be given as a JSON file with ``staticroute --config``.
"""

from staticroute import StaticServer, middleware

app = middleware(
    {
        "port": 8080,
        "static": {
            # Serve the main site straight from its directory
            "www.example.com": "/var/www/example/",
            # Every user gets a subdirectory, e.g. /var/www/users/alice/
            "*.users.example.com": {
                "path": "/var/www/users/",
                "target": "/[1][path]",
            },
            # /images/logo.png is served from /var/www/cdn/assets/images/logo.png
            "cdn.example.com/images": {
                "path": "/var/www/cdn/",
                "target": "/assets[path]",
            },
        },
    }
)


if __name__ == "__main__":
    server = StaticServer(app, port=8080)
    server.run()
