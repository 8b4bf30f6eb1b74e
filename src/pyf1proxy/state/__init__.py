"""State/store layer.

This package is the single source of truth for how partial updates coming
from the relay, the native live timing feed, MQTT, REST polling and replay
are merged into the one document served to subscribers.
"""
