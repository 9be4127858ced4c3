"""
Realtime event source adapters.
"""

from .mqtt_source import MqttEventSource

__all__ = ["MqttEventSource"]
