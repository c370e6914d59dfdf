"""StreamTUI - search, pick a torrent source and play or cast it from the terminal."""

__version__ = "0.3.0"
