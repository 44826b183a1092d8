"""Reduce untrusted upstream markup to text, links and line breaks."""

import html
from typing import Any, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from bs4.element import PreformattedString

ALLOWED_TAGS = frozenset({"a", "br", "p"})

# Removed together with everything inside them
DROPPED_TAGS = frozenset(
    {
        "script",
        "style",
        "iframe",
        "frame",
        "frameset",
        "object",
        "embed",
        "applet",
        "noscript",
        "template",
        "svg",
        "math",
        "form",
        "input",
        "button",
        "textarea",
        "select",
        "head",
        "title",
        "meta",
        "link",
        "base",
    }
)

SAFE_SCHEMES = frozenset({"http", "https", "mailto"})

LINK_FACET = "app.bsky.richtext.facet#link"
MENTION_FACET = "app.bsky.richtext.facet#mention"
TAG_FACET = "app.bsky.richtext.facet#tag"


def is_safe_url(url: Any) -> bool:
    if not isinstance(url, str) or not url:
        return False
    try:
        scheme = urlparse(url.strip()).scheme.lower()
    except ValueError:
        return False
    return scheme in SAFE_SCHEMES


def sanitize_html(markup: Any) -> str:
    """Strip markup down to <p>, <br> and <a href> with safe schemes.

    Anything that is not a string sanitizes to an empty fragment.
    """
    soup = BeautifulSoup(markup if isinstance(markup, str) else "", "html.parser")

    # Comments, CDATA, doctypes and processing instructions
    for node in soup.find_all(string=lambda s: isinstance(s, PreformattedString)):
        node.extract()

    for tag in soup.find_all(sorted(DROPPED_TAGS)):
        if not tag.decomposed:
            tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue

        href = tag.get("href") if tag.name == "a" else None
        tag.attrs = {}
        if href and is_safe_url(href):
            tag["href"] = href.strip()

    return str(soup).strip()


def _escape_text(text: str) -> str:
    return html.escape(text, quote=False).replace("\n", "<br>")


def _facet_href(features: Any) -> Optional[str]:
    for feature in features if isinstance(features, list) else []:
        if not isinstance(feature, dict):
            continue
        kind = feature.get("$type")
        if kind == LINK_FACET and is_safe_url(feature.get("uri")):
            return feature["uri"]
        if kind == MENTION_FACET and feature.get("did"):
            return f"https://bsky.app/profile/{feature['did']}"
        if kind == TAG_FACET and feature.get("tag"):
            return f"https://bsky.app/hashtag/{feature['tag']}"
    return None


def text_to_html(text: Any, facets: Any = None) -> str:
    """Render Bluesky plain text with rich-text facets as safe HTML.

    Facet offsets count UTF-8 bytes, not characters.
    """
    data = (text if isinstance(text, str) else "").encode("utf-8", errors="surrogatepass")

    spans = []
    for facet in facets if isinstance(facets, list) else []:
        if not isinstance(facet, dict) or not isinstance(facet.get("index"), dict):
            continue
        index = facet["index"]
        start, end = index.get("byteStart"), index.get("byteEnd")
        href = _facet_href(facet.get("features"))
        if not isinstance(start, int) or not isinstance(end, int) or href is None:
            continue
        if 0 <= start < end <= len(data):
            spans.append((start, end, href))
    spans.sort(key=lambda span: span[0])

    parts = []
    position = 0
    for start, end, href in spans:
        if start < position:
            # overlapping facet
            continue
        parts.append(_escape_text(data[position:start].decode("utf-8", errors="replace")))
        label = _escape_text(data[start:end].decode("utf-8", errors="replace"))
        parts.append(f'<a href="{html.escape(href, quote=True)}">{label}</a>')
        position = end
    parts.append(_escape_text(data[position:].decode("utf-8", errors="replace")))

    body = "".join(parts)
    return f"<p>{body}</p>" if body else ""
