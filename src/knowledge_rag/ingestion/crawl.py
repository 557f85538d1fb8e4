"""Page crawling through hosted reader providers.

Two providers are supported:

* ``jina`` — ``GET https://r.jina.ai/<url>`` returns the page as readable
  text (or HTML, which is converted to markdown here);
* ``firecrawl`` — ``POST https://api.firecrawl.dev/v1/scrape`` returns the
  page as markdown.

Transient HTTP failures are retried with exponential backoff; a terminal
failure raises :class:`~knowledge_rag.errors.ProviderError`.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from bs4 import BeautifulSoup
from markdownify import markdownify

from knowledge_rag.config import Settings, settings
from knowledge_rag.errors import ProviderError

logger = logging.getLogger(__name__)

JINA_READER_URL = "https://r.jina.ai/"
FIRECRAWL_SCRAPE_URL = "https://api.firecrawl.dev/v1/scrape"

_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def html_to_markdown(html: str) -> str:
    """Strip boiler-plate tags from *html* and convert the rest to markdown."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    return markdownify(str(soup), heading_style="ATX").strip()


def _is_transient(exc: requests.RequestException) -> bool:
    response = getattr(exc, "response", None)
    if response is None:
        return True
    return response.status_code == 429 or response.status_code >= 500


def request_with_retries(
    method: str,
    url: str,
    *,
    max_retries: int = 3,
    timeout: float = 60,
    **kwargs: Any,
) -> requests.Response:
    """Send one HTTP request, retrying transient failures.

    Client errors other than ``429`` are not retried.

    Raises
    ------
    ProviderError
        When every attempt failed.
    """
    attempts = max(1, max_retries)
    last_exc: requests.RequestException | None = None
    for attempt in range(1, attempts + 1):
        try:
            resp = requests.request(method, url, timeout=timeout, **kwargs)
            resp.raise_for_status()
            return resp
        except requests.RequestException as exc:
            last_exc = exc
            if not _is_transient(exc) or attempt == attempts:
                break
            wait = 2**attempt
            logger.warning("Retry %d/%d for %s (wait %ds): %s", attempt, attempts, url, wait, exc)
            time.sleep(wait)

    raise ProviderError(f"Failed to fetch {url} after {attempt} attempt(s): {last_exc}") from last_exc


def crawl_jina(url: str, cfg: Settings | None = None) -> str:
    cfg = cfg or settings
    headers = {"Accept": "text/plain"}
    if cfg.jina_api_key:
        headers["Authorization"] = f"Bearer {cfg.jina_api_key}"

    resp = request_with_retries(
        "GET",
        f"{JINA_READER_URL}{url}",
        headers=headers,
        max_retries=cfg.crawl_max_retries,
        timeout=cfg.crawl_timeout_seconds,
    )
    if "html" in resp.headers.get("content-type", ""):
        return html_to_markdown(resp.text)
    return resp.text


def crawl_firecrawl(url: str, cfg: Settings | None = None) -> str:
    cfg = cfg or settings
    if not cfg.firecrawl_api_key:
        raise ProviderError("firecrawl provider requires FIRECRAWL_API_KEY")

    resp = request_with_retries(
        "POST",
        FIRECRAWL_SCRAPE_URL,
        json={"url": url, "formats": ["markdown"]},
        headers={"Authorization": f"Bearer {cfg.firecrawl_api_key}"},
        max_retries=cfg.crawl_max_retries,
        timeout=cfg.crawl_timeout_seconds,
    )
    try:
        body = resp.json()
    except ValueError as exc:
        raise ProviderError(f"firecrawl returned a non-JSON response for {url}") from exc

    if not body.get("success", True):
        raise ProviderError(f"firecrawl failed for {url}: {body.get('error', 'unknown error')}")
    return (body.get("data") or {}).get("markdown") or ""


_PROVIDERS = {
    "jina": crawl_jina,
    "firecrawl": crawl_firecrawl,
}


def crawl(url: str, provider: str = "jina", cfg: Settings | None = None) -> str:
    """Fetch *url* through *provider* and return its readable text.

    Raises
    ------
    ValueError
        For an unknown provider.
    ProviderError
        When the provider fails or returns no content.
    """
    try:
        fetch = _PROVIDERS[provider]
    except KeyError:
        raise ValueError(f"Unsupported crawl provider {provider!r}; choose from {sorted(_PROVIDERS)}") from None

    t0 = time.monotonic()
    text = fetch(url, cfg)
    if not text or not text.strip():
        raise ProviderError(f"{provider} returned no content for {url}")

    logger.info("Crawled %s via %s (%d chars, %.1fs)", url, provider, len(text), time.monotonic() - t0)
    return text
