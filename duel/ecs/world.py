"""Lightweight ECS world for the per-peer duel simulation."""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Generator, Hashable, Iterable, List, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


class World:
    """
    Minimal entity-component storage with typed queries.

    Entities may carry an external key (e.g. a fighter id shared with the
    remote peer) so network events can find them again.
    """

    def __init__(self) -> None:
        self._next_entity_id: int = 1
        self._components: Dict[Type[Any], Dict[int, Any]] = defaultdict(dict)
        self._entity_components: Dict[int, set[Type[Any]]] = {}
        self._by_key: Dict[Hashable, int] = {}
        self._key_of: Dict[int, Hashable] = {}

    def create_entity(self, key: Optional[Hashable] = None, *components: Any) -> int:
        if key is not None and key in self._by_key:
            raise KeyError(f"entity key already in use: {key!r}")
        eid = self._next_entity_id
        self._next_entity_id += 1
        self._entity_components[eid] = set()
        if key is not None:
            self._by_key[key] = eid
            self._key_of[eid] = key
        for comp in components:
            self.add_component(eid, comp)
        return eid

    def remove_entity(self, entity: int) -> None:
        types = self._entity_components.pop(entity, set())
        for comp_type in types:
            self._components[comp_type].pop(entity, None)
        key = self._key_of.pop(entity, None)
        if key is not None:
            self._by_key.pop(key, None)

    def find(self, key: Hashable) -> Optional[int]:
        return self._by_key.get(key)

    def add_component(self, entity: int, component: Any) -> None:
        comp_type = type(component)
        self._components[comp_type][entity] = component
        self._entity_components[entity].add(comp_type)

    def get_component(self, entity: int, comp_type: Type[T]) -> Optional[T]:
        return self._components.get(comp_type, {}).get(entity)

    def entities_with(self, *comp_types: Type[Any]) -> Iterable[int]:
        required = set(comp_types)
        for entity, types in self._entity_components.items():
            if required.issubset(types):
                yield entity

    def query(self, *comp_types: Type[T]) -> Generator[Tuple[int, Tuple[Any, ...]], None, None]:
        for entity in self.entities_with(*comp_types):
            yield entity, tuple(self._components[ct][entity] for ct in comp_types)

    def snapshot(self, *comp_types: Type[Any]) -> List[Tuple[int, Tuple[Any, ...]]]:
        """Materialised query; safe to remove entities while iterating it."""
        return list(self.query(*comp_types))

    def components_of_type(self, comp_type: Type[T]) -> Dict[int, T]:
        return self._components.get(comp_type, {})

    def count(self, comp_type: Type[Any]) -> int:
        return len(self._components.get(comp_type, {}))


class System:
    """Base class for the ordered steps run by ``DuelSimulation.advance``."""

    def __init__(self, world: World) -> None:
        self.world = world

    def update(self, dt: float) -> None:
        pass
