"""Entry point for running the feed server as a module.

Usage:
    python -m masto_rss --port 6060
"""

from .main import main

if __name__ == "__main__":
    main()
