from .collector import MetricsCollector, Timer, metrics

__all__ = ["MetricsCollector", "Timer", "metrics"]
