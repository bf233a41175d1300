# === NAVMAP v1 ===
# {
#   "module": "MklSrc.Provisioning.net",
#   "purpose": "Provide the shared HTTPX client used for archive downloads",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client for archive downloads.

The client follows redirects (the conda channel answers with a redirect to its
CDN), verifies TLS against the certifi bundle, and never retries: a failed
transfer is fatal for the build invocation. Tests install a client backed by
``httpx.MockTransport`` through :func:`configure_http_client`.
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
from typing import Callable, MutableMapping, Optional

import certifi
import httpx

from .settings import HttpSettings

LOGGER = logging.getLogger("MklSrc.Provisioning.net")

# --- Constants & globals -------------------------------------------------------

_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None
_CLIENT_FACTORY: Optional[Callable[[], httpx.Client]] = None
_DEFAULT_SETTINGS = HttpSettings()

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _timeout_for(settings: HttpSettings) -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.connect_timeout_sec,
        read=settings.read_timeout_sec,
        write=settings.read_timeout_sec,
        pool=settings.connect_timeout_sec,
    )


def _request_hook(request: httpx.Request) -> None:
    meta: MutableMapping[str, object] = request.extensions.setdefault("mklfetch_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()
    LOGGER.debug(
        "http request",
        extra={"stage": "download", "method": request.method, "url": str(request.url)},
    )


def _response_hook(response: httpx.Response) -> None:
    meta = response.request.extensions.get("mklfetch_meta", {})
    start = meta.get("start_time") if isinstance(meta, MutableMapping) else None
    elapsed = time.perf_counter() - start if isinstance(start, (int, float)) else None
    LOGGER.debug(
        "http response",
        extra={
            "stage": "download",
            "url": str(response.request.url),
            "status": response.status_code,
            "elapsed_sec": round(elapsed, 3) if elapsed is not None else None,
        },
    )


def build_http_client(settings: Optional[HttpSettings] = None) -> httpx.Client:
    """Create a redirect-following client configured from ``settings``."""

    cfg = settings or _DEFAULT_SETTINGS
    # The transport owns TLS settings once one is passed explicitly.
    transport = httpx.HTTPTransport(
        verify=_build_ssl_context() if cfg.verify_tls else False,
        trust_env=cfg.trust_env,
        retries=0,
    )
    return httpx.Client(
        transport=transport,
        timeout=_timeout_for(cfg),
        trust_env=cfg.trust_env,
        follow_redirects=True,
        headers={"User-Agent": cfg.user_agent},
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(httpx.HTTPError, OSError):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def configure_http_client(
    client: Optional[httpx.Client] = None,
    *,
    factory: Optional[Callable[[], httpx.Client]] = None,
    default_settings: Optional[HttpSettings] = None,
) -> None:
    """Override the shared HTTPX client or register a factory for tests."""

    if client is not None and factory is not None:
        raise ValueError("provide either a client or factory, not both")

    global _HTTP_CLIENT, _CLIENT_FACTORY, _DEFAULT_SETTINGS
    with _CLIENT_LOCK:
        if default_settings is not None:
            _DEFAULT_SETTINGS = default_settings
        if client is None:
            _close_client_unlocked()
        elif _HTTP_CLIENT is not client:
            _close_client_unlocked()
            _HTTP_CLIENT = client
        _CLIENT_FACTORY = factory


def reset_http_client() -> None:
    """Drop the shared client and any registered factory."""

    global _CLIENT_FACTORY, _DEFAULT_SETTINGS
    with _CLIENT_LOCK:
        _CLIENT_FACTORY = None
        _DEFAULT_SETTINGS = HttpSettings()
        _close_client_unlocked()


def get_http_client(settings: Optional[HttpSettings] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it on first use."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not None:
            return _HTTP_CLIENT
        if _CLIENT_FACTORY is not None:
            candidate = _CLIENT_FACTORY()
            if not isinstance(candidate, httpx.Client):
                raise TypeError("client factory must return an httpx.Client")
            LOGGER.info(
                "using custom httpx client",
                extra={"stage": "download", "factory": getattr(_CLIENT_FACTORY, "__qualname__", None)},
            )
            _HTTP_CLIENT = candidate
            return candidate
        _HTTP_CLIENT = build_http_client(settings or _DEFAULT_SETTINGS)
        return _HTTP_CLIENT


__all__ = [
    "build_http_client",
    "configure_http_client",
    "get_http_client",
    "reset_http_client",
]
