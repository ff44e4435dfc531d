"""
Unit tests for pipeline/acceptance.py
"""
import httpx
import pytest

from mcp_deploy.exceptions import AcceptanceTestError
from mcp_deploy.pipeline.acceptance import AcceptanceTestRunner


def make_runner(paths, handler):
    return AcceptanceTestRunner(paths, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_all_paths_pass():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200)

    results = make_runner(["/", "/health", "api/items"], handler).run("http://shop.test/")

    assert seen == ["/", "/health", "/api/items"]
    assert results == {
        "http://shop.test/": 200,
        "http://shop.test/health": 200,
        "http://shop.test/api/items": 200,
    }


def test_non_2xx_fails_with_url():
    def handler(request):
        return httpx.Response(500 if request.url.path == "/api" else 204)

    with pytest.raises(AcceptanceTestError) as exc_info:
        make_runner(["/", "/api", "/never"], handler).run("http://shop.test")

    assert exc_info.value.context["url"] == "http://shop.test/api"
    assert exc_info.value.context["passed"] == ["http://shop.test/"]


def test_connection_error_fails():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(AcceptanceTestError):
        make_runner(["/"], handler).run("http://shop.test")
