import pytest

from staticroute import NotFoundApplication, Request, RoutePattern, Status


def make_request(url: str, host: str = "example.com") -> Request:
    return Request({"REQUEST_METHOD": "GET", "REQUEST_URI": url, "HTTP_HOST": host})


def test_request_fields():
    request = make_request("/a%20b/c.html?x=1", host="Example.com:8080")
    assert request.method == "GET"
    assert request.url == "/a%20b/c.html?x=1"
    assert request.path == "/a b/c.html"
    assert request.query == "x=1"
    assert request.hostname == "example.com"
    assert request.port == 8080


def test_request_hostname_unicode():
    assert make_request("/", host="café.localhost").hostname == "xn--caf-dma.localhost"


def test_request_hostname_ipv6():
    request = make_request("/", host="[::1]:8080")
    assert request.hostname == "::1"
    assert request.port == 8080


def test_request_missing_host():
    request = Request({"REQUEST_URI": "/"})
    assert request.hostname == ""
    assert request.port is None


def test_request_invalid_target():
    with pytest.raises(ValueError):
        make_request("*")


def test_request_non_utf8():
    with pytest.raises(ValueError):
        make_request("/%AE")


def test_request_rewrite():
    request = make_request("/images/foo.png?v=1")
    request.rewrite("/assets/images/foo.png?v=1")
    assert request.url == "/assets/images/foo.png?v=1"
    assert request.path == "/assets/images/foo.png"
    assert request.query == "v=1"
    assert request.environ["ORIGINAL_REQUEST_URI"] == "/images/foo.png?v=1"


def test_request_rewrite_keeps_first_original():
    request = make_request("/a")
    request.rewrite("/b")
    request.rewrite("c")
    assert request.url == "/c"
    assert request.environ["ORIGINAL_REQUEST_URI"] == "/a"


def test_route_pattern_hostname_case_insensitive():
    pattern = RoutePattern(hostname=r"example\.com")
    assert pattern.match(make_request("/", host="EXAMPLE.com"))


def test_route_pattern_full_match():
    pattern = RoutePattern(path=r"/images")
    assert pattern.match(make_request("/images"))
    assert pattern.match(make_request("/images/a")) is None


def test_route_pattern_any():
    route_match = RoutePattern().match(make_request("/anything"))
    assert route_match is not None
    assert route_match.groups == ()


def test_route_match_named_group_missing():
    route_match = RoutePattern(path=r"/(?P<page>\w+)").match(make_request("/a"))
    assert route_match.group("page") == "a"
    with pytest.raises(KeyError):
        route_match.group("user")


def test_not_found_application():
    statuses = []
    body = NotFoundApplication()(
        {"REQUEST_URI": "/", "HTTP_HOST": "example.com"},
        lambda status, headers: statuses.append(status),
    )
    assert statuses == [Status.NOT_FOUND]
    assert b"".join(body) == b"Not Found"


def test_request_rewrite_double_slash():
    request = make_request("/files/test.txt")
    request.rewrite("//files/test.txt?v=1")
    assert request.url == "//files/test.txt?v=1"
    assert request.path == "//files/test.txt"
    assert request.query == "v=1"


def test_request_double_slash_target():
    request = make_request("//files//test.txt")
    assert request.path == "//files//test.txt"
    assert request.query == ""
