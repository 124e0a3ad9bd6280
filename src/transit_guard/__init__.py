"""
transit_guard — error handling and resilience pipeline for the bus-tracking API.

Classifies request faults into a closed taxonomy, renders sanitized JSON error
bodies, reports unexpected faults to a telemetry sink, and guards the process
lifecycle (fatal fault exit, graceful shutdown on SIGINT/SIGTERM).
"""

__version__ = "0.1.0"
