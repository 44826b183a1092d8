"""Serialize a FeedDocument to RSS 2.0.

The output depends only on the document: elements are appended in a fixed
order, there is no wall-clock timestamp, and lastBuildDate is taken from
the newest item. Rendering the same document twice therefore yields
identical bytes, which is what lets the web layer hand out a content-hash
ETag.

HTML bodies go into <description> and <content:encoded> as text, so
ElementTree entity-escapes them; feed readers unescape and render them.
"""

import re
import xml.etree.ElementTree as ET
from datetime import timezone
from email.utils import format_datetime
from typing import Optional

from .models import FeedDocument, FeedItem

GENERATOR = "masto-rss"

CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
DC_NS = "http://purl.org/dc/elements/1.1/"
MEDIA_NS = "http://search.yahoo.com/mrss/"

ET.register_namespace("content", CONTENT_NS)
ET.register_namespace("dc", DC_NS)
ET.register_namespace("media", MEDIA_NS)

# Characters outside the XML 1.0 Char production, lone surrogates included
_ILLEGAL_XML_CHARS = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


def _text(value: Optional[str]) -> str:
    return _ILLEGAL_XML_CHARS.sub("", value or "")


def _sub(parent: ET.Element, tag: str, value: Optional[str], **attrib) -> ET.Element:
    element = ET.SubElement(parent, tag, attrib)
    element.text = _text(value)
    return element


def rfc822(item: FeedItem) -> str:
    return format_datetime(item.published_at.astimezone(timezone.utc), usegmt=True)


def _creator(item: FeedItem) -> str:
    if item.author_handle and item.author_handle != item.author_name:
        return f"{item.author_name} ({item.author_handle})"
    return item.author_name


def _item(channel: ET.Element, item: FeedItem):
    it = ET.SubElement(channel, "item")
    _sub(it, "title", item.title)
    if item.permalink:
        _sub(it, "link", item.permalink)
    _sub(it, "description", item.content_html)
    _sub(it, f"{{{CONTENT_NS}}}encoded", item.content_html)
    _sub(it, f"{{{DC_NS}}}creator", _creator(item))
    _sub(it, "guid", item.id, isPermaLink="false")
    _sub(it, "pubDate", rfc822(item))
    for url in item.media_urls:
        ET.SubElement(it, f"{{{MEDIA_NS}}}content", url=_text(url))


def render(document: FeedDocument) -> bytes:
    """Render ``document`` as UTF-8 encoded RSS 2.0."""
    rss = ET.Element("rss", version="2.0")
    channel = ET.SubElement(rss, "channel")
    _sub(channel, "title", document.channel_title)
    _sub(channel, "link", document.channel_link)
    _sub(channel, "description", document.channel_description or document.channel_title)
    _sub(channel, "generator", GENERATOR)
    if document.items:
        _sub(channel, "lastBuildDate", rfc822(document.items[0]))

    for item in document.items:
        _item(channel, item)

    ET.indent(rss, space="  ")
    xml = ET.tostring(rss, encoding="utf-8")
    return b'<?xml version="1.0" encoding="UTF-8"?>\n' + xml + b"\n"
