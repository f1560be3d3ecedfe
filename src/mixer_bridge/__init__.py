"""Bridge between a remote audio mixer and an MQTT control surface."""

__version__ = "0.1.0"
