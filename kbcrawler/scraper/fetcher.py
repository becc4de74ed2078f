"""HTTP fetcher shared by the sitemap reader, the mapper and the dispatcher."""

from __future__ import annotations

from typing import Optional

import httpx

from kbcrawler.config import settings
from kbcrawler.errors import FetchError
from kbcrawler.scraper.models import RawPage


def make_client(
    user_agent: Optional[str] = None,
    timeout: Optional[float] = None,
) -> httpx.Client:
    """Return an ``httpx.Client`` configured from ``settings``.

    The client is safe to share between threads; close it when done.
    """
    return httpx.Client(
        headers={"User-Agent": user_agent or settings.user_agent},
        timeout=timeout if timeout is not None else settings.request_timeout,
        follow_redirects=True,
        verify=settings.verify_tls,
    )


def fetch_url(url: str, client: Optional[httpx.Client] = None) -> RawPage:
    """Fetch *url* and return a :class:`RawPage`.

    Uses *client* when given, otherwise a short-lived client built by
    :func:`make_client`.  The fetcher never sleeps; politeness delays are
    the dispatcher's job.

    Raises:
        FetchError: On a non-2xx status, a timeout or any transport error.
    """
    if client is None:
        with make_client() as own:
            return fetch_url(url, own)

    try:
        response = client.get(url)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise FetchError(
            f"HTTP {exc.response.status_code}", url, status_code=exc.response.status_code
        ) from exc
    except httpx.TimeoutException as exc:
        raise FetchError("Request timed out", url) from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Request failed: {exc}", url) from exc

    return RawPage(
        url=url,
        html=response.text,
        status_code=response.status_code,
        content=response.content,
    )
