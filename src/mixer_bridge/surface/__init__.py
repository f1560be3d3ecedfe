"""Control surface host implementations."""

from .mqtt_host import MQTTSurfaceHost, entity_key, parse_level, slugify

__all__ = ["MQTTSurfaceHost", "entity_key", "parse_level", "slugify"]
