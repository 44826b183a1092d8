"""Map provider-shaped posts onto FeedItem.

A post that cannot be normalized raises NormalizeError; normalize_batch
logs it and moves on, so one broken post never costs the whole feed.
"""

import html
import re
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from ..errors import IncompletePost, NormalizeError
from ..providers.models import ProviderVariant
from .models import FeedItem
from .sanitize import is_safe_url, sanitize_html, text_to_html

logger = structlog.get_logger()

_DATETIME = TypeAdapter(datetime)
_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")

MASTODON_MEDIA_KINDS = frozenset({"image", "gifv", "video"})

BLUESKY_REPOST = "app.bsky.feed.defs#reasonRepost"
BLUESKY_IMAGES = "app.bsky.embed.images#view"
BLUESKY_EXTERNAL = "app.bsky.embed.external#view"
BLUESKY_RECORD_WITH_MEDIA = "app.bsky.embed.recordWithMedia#view"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    for candidate in (value, _LONG_FRACTION.sub(r"\1", value)):
        try:
            return _DATETIME.validate_python(candidate)
        except ValidationError:
            continue
    return None


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _sequence(value: Any) -> list:
    return value if isinstance(value, list) else []


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _image_html(urls: list[str]) -> str:
    return "".join(f'<p><img src="{html.escape(url, quote=True)}"></p>' for url in urls)


def _reshare_header(verb: str, resharer: str, author: str) -> str:
    return f"<p>{html.escape(resharer)} {verb} {html.escape(author)}:</p>"


# =============================================================================
# Mastodon
# =============================================================================


def _mastodon_media(status: dict) -> tuple[list[str], list[str]]:
    """Return (media urls, image preview urls) in attachment order."""
    media: list[str] = []
    previews: list[str] = []

    for attachment in _sequence(status.get("media_attachments")):
        attachment = _mapping(attachment)
        if attachment.get("type") not in MASTODON_MEDIA_KINDS:
            continue
        url = attachment.get("url") or attachment.get("preview_url")
        if not is_safe_url(url):
            continue
        media.append(url)
        preview = attachment.get("preview_url") or url
        if is_safe_url(preview):
            previews.append(preview)

    card_url = _mapping(status.get("card")).get("url")
    if is_safe_url(card_url) and card_url not in media:
        media.append(card_url)

    return media, previews


def _mastodon_author(account: dict) -> tuple[str, str]:
    handle = _string(account.get("acct")) or _string(account.get("username"))
    name = (
        _string(account.get("display_name"))
        or _string(account.get("username"))
        or handle
        or "unknown"
    )
    return name, f"@{handle}" if handle else ""


def normalize_mastodon(status: dict) -> FeedItem:
    entry_id = status.get("id")
    if not entry_id:
        raise IncompletePost("mastodon status has no id")
    published_at = _parse_timestamp(status.get("created_at"))
    if published_at is None:
        raise IncompletePost(f"mastodon status {entry_id} has no usable created_at")

    reblog = status.get("reblog")
    source = reblog if isinstance(reblog, dict) else status
    is_reshare = source is not status

    author_name, author_handle = _mastodon_author(_mapping(source.get("account")))
    resharer_name, _ = _mastodon_author(_mapping(status.get("account")))

    body = sanitize_html(source.get("content"))
    spoiler = _string(source.get("spoiler_text"))
    if spoiler:
        body = f"<p>CW: {html.escape(spoiler)}</p>{body}"

    media_urls, previews = _mastodon_media(source)
    body += _image_html(previews)

    if is_reshare:
        title = f"{resharer_name} boosted {author_name}"
        body = _reshare_header("boosted", resharer_name, author_name) + f"<blockquote>{body}</blockquote>"
    else:
        title = author_name

    return FeedItem(
        id=f"mastodon:{_string(source.get('uri')) or source.get('id') or entry_id}",
        title=title,
        content_html=body,
        author_name=author_name,
        author_handle=author_handle,
        permalink=_string(source.get("url")) or _string(source.get("uri")),
        published_at=published_at,
        media_urls=media_urls,
        is_reshare=is_reshare,
    )


# =============================================================================
# Bluesky
# =============================================================================


def _bluesky_media(embed: dict) -> tuple[list[str], list[str], str]:
    """Return (media urls, image urls, extra html) for an embed view."""
    kind = embed.get("$type")

    if kind == BLUESKY_IMAGES:
        images = []
        for image in _sequence(embed.get("images")):
            url = _mapping(image).get("fullsize") or _mapping(image).get("thumb")
            if is_safe_url(url):
                images.append(url)
        return images, images, ""

    if kind == BLUESKY_EXTERNAL:
        external = _mapping(embed.get("external"))
        uri = external.get("uri")
        if not is_safe_url(uri):
            return [], [], ""
        label = html.escape(_string(external.get("title")) or uri)
        return [uri], [], f'<p><a href="{html.escape(uri, quote=True)}">{label}</a></p>'

    if kind == BLUESKY_RECORD_WITH_MEDIA:
        return _bluesky_media(_mapping(embed.get("media")))

    return [], [], ""


def _bluesky_author(author: dict) -> tuple[str, str]:
    handle = _string(author.get("handle"))
    name = _string(author.get("displayName")) or handle or _string(author.get("did")) or "unknown"
    return name, f"@{handle}" if handle else ""


def _bluesky_permalink(uri: str, author: dict) -> str:
    # at://<did>/app.bsky.feed.post/<rkey>
    if not uri.startswith("at://"):
        return ""
    profile = (
        _string(author.get("handle"))
        or _string(author.get("did"))
        or uri[len("at://"):].split("/", 1)[0]
    )
    rkey = uri.rsplit("/", 1)[-1]
    return f"https://bsky.app/profile/{profile}/post/{rkey}"


def normalize_bluesky(entry: dict) -> FeedItem:
    post = _mapping(entry.get("post"))
    uri = _string(post.get("uri"))
    if not uri:
        raise IncompletePost("bluesky feed entry has no post uri")

    record = _mapping(post.get("record"))
    reason = _mapping(entry.get("reason"))
    is_reshare = reason.get("$type") == BLUESKY_REPOST

    published_at = (
        (_parse_timestamp(reason.get("indexedAt")) if is_reshare else None)
        or _parse_timestamp(record.get("createdAt"))
        or _parse_timestamp(post.get("indexedAt"))
    )
    if published_at is None:
        raise IncompletePost(f"bluesky post {uri} has no usable timestamp")

    author = _mapping(post.get("author"))
    author_name, author_handle = _bluesky_author(author)

    body = text_to_html(record.get("text"), record.get("facets"))
    media_urls, images, extra = _bluesky_media(_mapping(post.get("embed")))
    body += extra + _image_html(images)

    if is_reshare:
        resharer_name, _ = _bluesky_author(_mapping(reason.get("by")))
        title = f"{resharer_name} reposted {author_name}"
        body = _reshare_header("reposted", resharer_name, author_name) + f"<blockquote>{body}</blockquote>"
    else:
        title = author_name

    return FeedItem(
        id=f"bluesky:{uri}",
        title=title,
        content_html=body,
        author_name=author_name,
        author_handle=author_handle,
        permalink=_bluesky_permalink(uri, author),
        published_at=published_at,
        media_urls=media_urls,
        is_reshare=is_reshare,
    )


# =============================================================================
# Dispatch
# =============================================================================


def normalize(provider: ProviderVariant, raw_post: Any) -> FeedItem:
    """Convert one raw post; raises NormalizeError if it cannot be used."""
    if not isinstance(raw_post, dict):
        raise NormalizeError(f"{provider.value} post is not an object")

    try:
        if provider is ProviderVariant.MASTODON:
            return normalize_mastodon(raw_post)
        if provider is ProviderVariant.BLUESKY:
            return normalize_bluesky(raw_post)
    except ValidationError as e:
        raise NormalizeError(f"{provider.value} post failed validation: {e}") from e
    except (TypeError, AttributeError, ValueError) as e:
        raise NormalizeError(f"{provider.value} post has malformed fields: {e}") from e

    raise NormalizeError(f"Unsupported provider: {provider}")


def normalize_batch(
    provider: ProviderVariant,
    raw_posts: list[Any],
    include_reshares: bool = True,
) -> list[FeedItem]:
    """Normalize a page of posts, skipping the ones that fail."""
    items: list[FeedItem] = []
    seen: set[str] = set()
    skipped = 0

    for raw_post in raw_posts:
        try:
            item = normalize(provider, raw_post)
        except NormalizeError as e:
            skipped += 1
            logger.warning("post_skipped", provider=provider.value, reason=e.message)
            continue

        if item.is_reshare and not include_reshares:
            continue
        if item.id in seen:
            logger.debug("duplicate_post_dropped", provider=provider.value, item_id=item.id)
            continue

        seen.add(item.id)
        items.append(item)

    logger.info(
        "posts_normalized",
        provider=provider.value,
        total=len(raw_posts),
        kept=len(items),
        skipped=skipped,
    )
    return items
