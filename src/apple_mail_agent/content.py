"""Hyperlink extraction from message bodies."""

import re
from typing import List

from bs4 import BeautifulSoup

from apple_mail_agent.models import Link

MAX_LINKS = 20

_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
_HTML_HINT_RE = re.compile(r"<\s*(a|html|body|div|p|br|table)\b", re.IGNORECASE)


def extract_links(body: str, limit: int = MAX_LINKS) -> List[Link]:
    """
    Collect up to ``limit`` distinct links from a message body.

    HTML bodies yield anchor text and href; plain-text bodies yield bare
    URLs, with the URL doubling as the link text.
    """
    if not body:
        return []

    links: List[Link] = []
    seen = set()

    def add(text: str, raw_href: str) -> None:
        href = raw_href.strip().rstrip(".,;:")
        if not href or href in seen or len(links) >= limit:
            return
        seen.add(href)
        if not text or text == raw_href:
            text = href
        links.append(Link(text=text.strip(), href=href))

    if _HTML_HINT_RE.search(body):
        soup = BeautifulSoup(body, "html.parser")
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"]
            if href.lower().startswith(("http://", "https://", "mailto:")):
                add(anchor.get_text(" ", strip=True), href)
        text = soup.get_text(" ")
    else:
        text = body

    for match in _URL_RE.finditer(text):
        add(match.group(0), match.group(0))

    return links
