"""LazyWrite — illustrated educational book generator."""

__version__ = "0.1.0"
