"""
ExamForge - Web Page Fetcher
Downloads a single URL and reduces HTML to paragraph-separated text.
"""
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Optional

import httpx

from examforge.core.errors import ProviderError

USER_AGENT = "examforge-worker"

_BLOCK_TAGS = {
    "p", "div", "section", "article", "br", "li", "ul", "ol", "pre",
    "blockquote", "table", "tr", "h1", "h2", "h3", "h4", "h5", "h6",
}
_SKIP_TAGS = {"script", "style", "noscript", "nav", "footer", "header", "svg"}
_HEADINGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}


@dataclass
class WebPage:
    url: str
    title: Optional[str]
    text: str
    is_markdown: bool


class _TextExtractor(HTMLParser):
    """Collects visible text; headings become Markdown headings."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []
        self.title: Optional[str] = None
        self._skip_depth = 0
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag == "title":
            self._in_title = True
        elif tag in _HEADINGS:
            self.parts.append("\n\n" + "#" * _HEADINGS[tag] + " ")
        elif tag in _BLOCK_TAGS:
            self.parts.append("\n\n")

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS and self._skip_depth:
            self._skip_depth -= 1
        elif tag == "title":
            self._in_title = False
        elif tag in _BLOCK_TAGS or tag in _HEADINGS:
            self.parts.append("\n\n")

    def handle_data(self, data):
        if self._in_title:
            self.title = (self.title or "") + data.strip()
            return
        if self._skip_depth:
            return
        self.parts.append(data)

    def text(self) -> str:
        raw = "".join(self.parts)
        raw = re.sub(r"[ \t]+", " ", raw)
        raw = re.sub(r" *\n *", "\n", raw)
        # Heading markers left without text
        raw = re.sub(r"^#{1,6} *$", "", raw, flags=re.MULTILINE)
        return re.sub(r"\n{3,}", "\n\n", raw).strip()


def html_to_text(html: str) -> tuple[Optional[str], str]:
    """Return ``(title, text)`` for an HTML document."""
    parser = _TextExtractor()
    parser.feed(html)
    parser.close()
    return parser.title or None, parser.text()


async def fetch_page(http: httpx.AsyncClient, url: str) -> WebPage:
    """Fetch ``url``; HTML is converted to text, anything textual is kept as-is."""
    try:
        response = await http.get(url, headers={"User-Agent": USER_AGENT}, follow_redirects=True)
    except httpx.HTTPError as e:
        raise ProviderError(f"Failed to fetch {url}: {e}") from e
    if response.status_code >= 400:
        raise ProviderError(f"Failed to fetch {url}: HTTP {response.status_code}")

    content_type = response.headers.get("content-type", "").lower()
    if "html" in content_type:
        title, text = html_to_text(response.text)
        return WebPage(url=url, title=title, text=text, is_markdown=False)
    if content_type.startswith("text/") or "markdown" in content_type or not content_type:
        is_markdown = "markdown" in content_type or url.lower().endswith((".md", ".mdx"))
        return WebPage(url=url, title=None, text=response.text.strip(), is_markdown=is_markdown)

    raise ProviderError(f"Unsupported content type for {url}: {content_type}")
