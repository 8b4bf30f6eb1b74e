"""Ingestion layer.

Helpers that turn upstream records (OpenF1 REST/MQTT) into normalized
partial updates of the live timing document.
"""

__all__: list[str] = []
