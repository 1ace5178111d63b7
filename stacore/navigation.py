"""
Resolve resource paths

    Things                                  root collection
    Things(1)                               root entity
    Things(1)/Locations                     related collection, source: Things(1)
    HistoricalLocations(3)/Thing/Locations  related collection, source: the Thing of HistoricalLocations(3)

Every hop is checked against the registry. Intermediate hops are also checked against the
database: a related collection is only meaningful when the chain leading to it exists.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import stacore
from .errors import InvalidNavigationError, NotFoundError
from .registry import EntitySet, SchemaRegistry
from .request import PathSegment


@dataclass(frozen=True)
class NavigationContext:
    """
    source_set: entity set of the segment preceding the target, None for a root request
    source_id: identifier of the source entity
    source_segment: index of the path segment that introduced the source
    target_set: entity set of the final segment
    target_id: identifier in the final segment, if any
    target_property: navigation property of the final segment, None for a root request
    target_many: whether the final segment addresses a collection
    """

    source_set: Optional[EntitySet]
    source_id: Optional[str]
    source_segment: Optional[int]
    target_set: EntitySet
    target_id: Optional[str] = None
    target_property: Optional[str] = None
    target_many: bool = True

    @property
    def is_entity(self) -> bool:
        return self.target_id is not None or not self.target_many


class NavigationResolver:
    def __init__(self, registry: SchemaRegistry, services) -> None:
        """
        :param registry: SchemaRegistry
        :param services: EntityServiceRepository, used to check intermediate hops
        """
        self.registry = registry
        self.services = services

    def resolve_root(self, segment: PathSegment) -> EntitySet:
        return self.registry.get_entity_set(segment.name)

    def resolve_target(self, segments: Sequence[PathSegment]) -> Tuple[EntitySet, bool]:
        """
        Walk the path against the registry only

        :return: target entity set, whether the path addresses a single entity
        """
        if not segments:
            raise InvalidNavigationError("Empty resource path")
        current = self.resolve_root(segments[0])
        is_entity = segments[0].key is not None
        for segment in segments[1:]:
            nav = self.registry.resolve_navigation(current, segment.name)
            current = self.registry.get_entity_set(nav.target)
            is_entity = segment.key is not None or not nav.many
        return current, is_entity

    def resolve_chain(self, segments: Sequence[PathSegment]) -> NavigationContext:
        """
        :param segments: parsed resource path
        :return: NavigationContext
        :raise InvalidNavigationError: undeclared relationship or missing id
        :raise NotFoundError: an intermediate entity doesn't exist
        """
        # validate the whole path before touching the database
        self.resolve_target(segments)

        root = self.resolve_root(segments[0])
        if len(segments) == 1:
            return NavigationContext(None, None, None, root, segments[0].key, None, segments[0].key is None)

        current_set, current_id = root, segments[0].key
        if current_id is not None and not self.services.get_entity_service(root.name).exists(current_id):
            raise NotFoundError(f"No {root.name} with @iot.id {current_id}")

        last = len(segments) - 1
        for index, segment in enumerate(segments[1:], 1):
            previous = segments[index - 1]
            if current_id is None:
                raise InvalidNavigationError(f"{previous.name} requires an id to navigate to {segment.name}")
            nav = self.registry.resolve_navigation(current_set, segment.name)
            target = self.registry.get_entity_set(nav.target)
            if index == last:
                context = NavigationContext(current_set, current_id, index - 1, target, segment.key, segment.name, nav.many)
                stacore.log.debug(f"Resolved {'/'.join(str(s) for s in segments)}: {context}")
                return context

            service = self.services.get_entity_service(target.name)
            if segment.key is not None:
                if not service.exists_related(current_id, current_set, segment.name, segment.key):
                    raise NotFoundError(f"No {segment} related to {previous}")
                next_id = segment.key
            elif not nav.many:
                next_id = service.fetch_related_one(current_id, current_set, segment.name).identifier
            else:
                next_id = None
            current_set, current_id = target, next_id
