"""Telemetry helpers for runtime metrics."""

from .metrics import PipelineMetrics

__all__ = ["PipelineMetrics"]
