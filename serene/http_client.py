import httpx

from .settings import get_settings


def build_async_httpx_client(
    timeout: float | None = None, **kwargs
) -> httpx.AsyncClient:
    """Create a configured httpx.AsyncClient with sane defaults.

    Tests pass ``transport=httpx.MockTransport(...)`` through ``kwargs``.
    """
    t = timeout or get_settings().HTTP_CLIENT_TIMEOUT
    return httpx.AsyncClient(timeout=t, follow_redirects=True, **kwargs)


def service_headers(anon_key: str, access_token: str | None = None) -> dict[str, str]:
    """Headers expected by the hosted backend: api key plus bearer."""
    headers = {"Accept": "application/json"}
    if anon_key:
        headers["apikey"] = anon_key
    bearer = access_token or anon_key
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    return headers
