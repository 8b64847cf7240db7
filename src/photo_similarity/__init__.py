"""Near-duplicate photo grouping and resumable review batching."""

__version__ = "0.1.0"
