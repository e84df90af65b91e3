"""Shared HTTP plumbing for network sources.

Maps HTTP failures onto the supervisor's error taxonomy:

    404 (or absent_statuses) -> None (caller reports a Miss)
    401, 403                 -> FatalSourceError (bad key or URL; retrying won't help)
    429, 5xx, timeouts, DNS  -> TransientFetchError (retried next cycle)
"""

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from config import HTTP_TIMEOUT, USER_AGENT
from lifestream.errors import FatalSourceError, TransientFetchError

logger = logging.getLogger(__name__)


def make_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    if headers:
        session.headers.update(headers)
    return session


def http_get(
    session: requests.Session,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = HTTP_TIMEOUT,
    absent_statuses: Tuple[int, ...] = (404,),
) -> Optional[requests.Response]:
    """GET url and classify the result.

    Returns None when the status is in absent_statuses (the source says the
    data does not exist).
    """
    try:
        resp = session.get(url, params=params, timeout=timeout)
    except requests.Timeout as exc:
        raise TransientFetchError(f"timeout: {exc}") from exc
    except requests.RequestException as exc:
        raise TransientFetchError(f"request failed: {exc}") from exc

    status = resp.status_code
    if status in absent_statuses:
        return None
    if status in (401, 403):
        raise FatalSourceError(f"HTTP {status} from {url} (check credentials)")
    if status == 429:
        raise TransientFetchError(f"Rate limited: HTTP 429 from {url}")
    if status >= 400:
        raise TransientFetchError(f"HTTP {status} from {url}")
    return resp
