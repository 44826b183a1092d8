"""masto-rss: Mastodon and Bluesky timelines as RSS feeds."""

__version__ = "0.1.0"
