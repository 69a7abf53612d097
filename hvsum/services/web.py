from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

_DEFAULT_TITLE = "Web Page Summary"
_BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form")
_BLANK_LINES = re.compile(r"\n\s*\n+")


class ContentExtractionError(RuntimeError):
    """Raised when a page cannot be fetched or yields no readable text."""


@dataclass(slots=True)
class WebContent:
    url: str
    title: str
    text: str


def is_valid_url(value: str) -> bool:
    candidate = value.strip()
    if candidate.startswith(("http://", "https://")):
        return bool(urlparse(candidate).netloc)
    if "." in candidate and " " not in candidate:
        return bool(urlparse(f"https://{candidate}").netloc)
    return False


def normalize_url(value: str) -> str:
    candidate = value.strip()
    if not candidate.startswith(("http://", "https://")):
        candidate = f"https://{candidate}"
    return candidate


def extract_text(html: str) -> tuple[str, str]:
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""

    for tag in soup(list(_BOILERPLATE_TAGS)):
        tag.decompose()

    container = soup.find("article") or soup.find("main") or soup.body or soup
    text = container.get_text(separator="\n")
    text = "\n".join(line.strip() for line in text.splitlines())
    text = _BLANK_LINES.sub("\n\n", text).strip()
    return title or _DEFAULT_TITLE, text


class WebFetcher:
    def __init__(self, timeout_seconds: int = 30, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": "Mozilla/5.0 (compatible; hvsum/1.0)"},
        )

    async def extract(self, url: str) -> WebContent:
        target = normalize_url(url)
        try:
            response = await self._client.get(target)
        except httpx.HTTPError as exc:
            raise ContentExtractionError(f"failed to fetch URL: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise ContentExtractionError(
                f"HTTP {response.status_code}: {response.reason_phrase}"
            )

        title, text = extract_text(response.text)
        if not text:
            raise ContentExtractionError("failed to extract any meaningful content from the URL")

        logger.debug("Extracted %s characters from %s title=%r", len(text), target, title)
        return WebContent(url=target, title=title, text=text)

    async def close(self) -> None:
        await self._client.aclose()
