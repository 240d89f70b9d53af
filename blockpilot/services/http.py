"""Retry-aware HTTP client used to talk to the remote asset catalogue."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


@dataclass(frozen=True)
class HttpSettings:
    timeout: float  # read timeout, seconds
    connect_timeout: float
    retries: int
    backoff_factor: float
    status_forcelist: Iterable[int] = (429, 500, 502, 503, 504)


_LOGGER = logging.getLogger("blockpilot.http")
_SETTINGS = HttpSettings(
    timeout=float(os.getenv("BP_HTTP_TIMEOUT", "20") or 20),
    connect_timeout=float(os.getenv("BP_HTTP_CONNECT_TIMEOUT", "5") or 5),
    retries=int(os.getenv("BP_HTTP_RETRIES", "3") or 3),
    backoff_factor=float(os.getenv("BP_HTTP_BACKOFF", "0.5") or 0.5),
)
_SESSION: Session | None = None
_ALLOWED_METHODS = frozenset({"GET", "HEAD"})


def _build_retry(settings: HttpSettings) -> Retry:
    return Retry(
        total=max(0, settings.retries),
        connect=max(0, settings.retries),
        read=max(0, settings.retries),
        backoff_factor=max(0.0, settings.backoff_factor),
        status_forcelist=tuple(settings.status_forcelist),
        allowed_methods=_ALLOWED_METHODS,
        raise_on_status=False,
    )


def _create_session(settings: HttpSettings) -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=_build_retry(settings))
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def get_http_session() -> Session:
    global _SESSION
    if _SESSION is None:
        _SESSION = _create_session(_SETTINGS)
    return _SESSION


def _default_timeout() -> tuple[float, float]:
    connect = max(0.1, float(_SETTINGS.connect_timeout))
    read = max(connect + 1.0, float(_SETTINGS.timeout))
    return connect, read


def http_request(
    method: str,
    url: str,
    *,
    session: Session | None = None,
    logger: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> Response:
    """Perform a request on the shared session; transport errors are logged and re-raised."""

    sess = session or get_http_session()
    kwargs.setdefault("timeout", _default_timeout())
    log = logger or _LOGGER
    verb = method.upper()
    try:
        return sess.request(verb, url, **kwargs)
    except requests.RequestException as exc:
        log.warning("HTTP %s %s failed: %s", verb, url, exc)
        raise
