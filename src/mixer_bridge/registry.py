"""Registry of control entities keyed by remote identifier."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Literal

from mixer_bridge import metrics
from mixer_bridge.entities import ControlEntity, LevelControl, ToggleControl
from mixer_bridge.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mixer_bridge.structs import ControlSurfaceHost

logger = get_logger(__name__)

# Scenes are sources too on the remote side, so a scene may share its name
# with a level control. Each entity family gets its own id space.
type Namespace = Literal["level", "scene"]


def namespace_of(entity: ControlEntity) -> Namespace:
    return "scene" if isinstance(entity, ToggleControl) else "level"


class EntityRegistry:
    """Owns every mirrored control entity.

    The host only renders what the registry attaches. ``generation`` increases
    on every ``clear()`` so work started against an older registry can tell
    it has been superseded.
    """

    lp: str = "EntityRegistry:"

    def __init__(self, host: ControlSurfaceHost | None = None) -> None:
        self.host: ControlSurfaceHost | None = host
        self.generation: int = 0
        self._entities: dict[tuple[Namespace, str], ControlEntity] = {}

    def clear(self) -> int:
        """Drop every entity and start a new generation.

        Returns:
            The new generation number

        """
        dropped = len(self._entities)
        for entity in self._entities.values():
            entity.bind(None)
        self._entities = {}
        self.generation += 1
        if self.host is not None:
            self.host.reset()
        metrics.record_entity_count(0)
        logger.debug("%s Cleared %d entities, generation=%d", self.lp, dropped, self.generation)
        return self.generation

    def put(self, entity_id: str, entity: ControlEntity) -> None:
        """Register an entity, replacing any previous one with the same id."""
        key = (namespace_of(entity), entity_id)
        previous = self._entities.get(key)
        if previous is not None and previous is not entity:
            logger.debug("%s Replacing entity %r", self.lp, entity_id)
            previous.bind(None)
        self._entities[key] = entity
        entity.bind(self.host)
        if self.host is not None:
            self.host.attach(entity)
        metrics.record_entity_count(len(self._entities))

    def put_if_current(self, generation: int, entity_id: str, entity: ControlEntity) -> bool:
        """Register ``entity`` only if no ``clear()`` happened since ``generation``."""
        if generation != self.generation:
            logger.debug(
                "%s Discarding stale entity %r (generation %d, current %d)",
                self.lp,
                entity_id,
                generation,
                self.generation,
            )
            return False
        self.put(entity_id, entity)
        return True

    def get(self, entity_id: str, namespace: Namespace = "level") -> ControlEntity | None:
        """Look up an entity; unknown ids return ``None``."""
        return self._entities.get((namespace, entity_id))

    def values(self) -> list[ControlEntity]:
        return list(self._entities.values())

    def levels(self) -> list[LevelControl]:
        return [e for e in self._entities.values() if isinstance(e, LevelControl)]

    def scenes(self) -> list[ToggleControl]:
        return [e for e in self._entities.values() if isinstance(e, ToggleControl)]

    def __contains__(self, entity_id: object) -> bool:
        return any(key[1] == entity_id for key in self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[str]:
        return iter([key[1] for key in self._entities])
