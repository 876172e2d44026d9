"""Request id and cache-handle context, JSON log lines, and the counters
and latency histograms served on /metrics.
"""

__all__ = ["context", "logger", "metrics", "middleware"]
