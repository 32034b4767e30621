from datetime import date

import httpx

FIXED_TODAY = date(2026, 10, 18)


def mock_http_client(handler) -> httpx.AsyncClient:
    """
    Build an AsyncClient whose requests are answered by *handler*.

    *handler* receives the ``httpx.Request`` and returns an ``httpx.Response``
    or raises an ``httpx`` transport error to simulate an unreachable service.
    """
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def unreachable(request: httpx.Request) -> httpx.Response:
    """MockTransport handler for a service that refuses connections."""
    raise httpx.ConnectError("Connection refused", request=request)
