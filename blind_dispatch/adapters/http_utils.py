"""HTTP plumbing shared by the vendor adapters."""

from __future__ import annotations

import base64
import os
import re
from typing import Any, Awaitable, Callable, TypeVar, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.errors import ConfigurationError, ProviderError, ValidationError


DEFAULT_TIMEOUT = 30.0
IMAGE_TIMEOUT = 60.0

_SIZE_PATTERN = re.compile(r"^(\d{1,5})x(\d{1,5})$")

T = TypeVar("T")


def parse_size(size: str) -> tuple[int, int]:
    """Split a ``WIDTHxHEIGHT`` image size into integers."""
    match = _SIZE_PATTERN.match(size.strip().lower())
    if not match:
        raise ValidationError(f"Invalid image size {size!r}; expected WIDTHxHEIGHT, e.g. 1024x1024")
    return int(match.group(1)), int(match.group(2))


def build_client(
    base_url: str, transport: Union[httpx.AsyncBaseTransport, None] = None
) -> httpx.AsyncClient:
    if transport is not None:
        return httpx.AsyncClient(base_url=base_url, transport=transport)
    proxy = os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
    if proxy:
        return httpx.AsyncClient(base_url=base_url, proxy=proxy)
    return httpx.AsyncClient(base_url=base_url)


def require_api_key(provider: str, api_key_env: str) -> str:
    """Read a credential from the environment variable named in the model config."""
    api_key = os.environ.get(api_key_env, "")
    if not api_key:
        raise ConfigurationError(
            f"{api_key_env} environment variable not set for provider '{provider}'"
        )
    return api_key


def format_api_error(label: str, response: httpx.Response) -> tuple[str, Union[str, None]]:
    """Build an admin-facing message and vendor error code from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    error = payload.get("error", {}) if isinstance(payload, dict) else {}
    if isinstance(error, str):
        error = {"message": error}
    message = error.get("message") or (
        payload.get("message") if isinstance(payload, dict) else None
    )
    if not message:
        message = response.text[:200] or response.reason_phrase
    code = error.get("type") or error.get("code") or error.get("status")
    status = response.status_code

    if status == 401:
        text = f"Authentication failed for {label} API. Check the configured API key."
    elif status == 403:
        text = f"Access forbidden for {label} API. The key may lack access or quota."
    elif status == 404 and "model" in str(message).lower():
        text = f"{label} model not found or not accessible."
    elif status == 429:
        text = f"Rate limit exceeded for {label} API."
    else:
        text = f"{label} API error ({status})."
    return f"{text} Original error: {message}", (str(code) if code else None)


async def request_json(
    client: httpx.AsyncClient,
    provider: str,
    label: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Send one request and return the decoded JSON body, or raise ProviderError."""
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise ProviderError(f"{label} request failed: {exc}", provider) from exc
    if resp.is_error:
        message, code = format_api_error(label, resp)
        raise ProviderError(message, provider, code=code or str(resp.status_code), status_code=resp.status_code)
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderError(
            f"{label} returned an unparseable payload", provider, status_code=resp.status_code
        ) from exc


async def request_bytes(
    client: httpx.AsyncClient,
    provider: str,
    label: str,
    url: str,
    method: str = "POST",
    **kwargs: Any,
) -> tuple[bytes, str]:
    """Return (body, content type) for binary endpoints and hosted image downloads."""
    kwargs.setdefault("timeout", IMAGE_TIMEOUT)
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise ProviderError(f"{label} request failed: {exc}", provider) from exc
    if resp.is_error:
        message, code = format_api_error(label, resp)
        raise ProviderError(message, provider, code=code or str(resp.status_code), status_code=resp.status_code)
    return resp.content, resp.headers.get("content-type", "application/octet-stream")


def to_data_url(data: bytes, mime: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime};base64,{encoded}"


async def with_transport_retries(call: Callable[[], Awaitable[T]], attempts: int = 3) -> T:
    """Retry ``call`` on transport failures only. Used for connection tests, never for generation."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(min=1, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    ):
        with attempt:
            return await call()
