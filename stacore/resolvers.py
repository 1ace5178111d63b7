"""
Request resolution

    StaRequest -> NavigationResolver -> EntityService (filter, order, skip, top)
               -> next link, count -> EntityAnnotator (+ $expand, then $select)

Expansions are resolved with the same resolvers, scoped to the expanded entity:
$expand=Locations on Things(1) is resolved like a request to Things(1)/Locations with the
nested query options. The relation graph is cyclic, the nesting depth of $expand is
bounded by MAX_EXPAND_DEPTH.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import stacore
from .annotate import EntityAnnotator
from .config import get_int_config
from .errors import InvalidNavigationError, NotFoundError, ValidationError
from .filters import FilterParser
from .navigation import NavigationContext, NavigationResolver
from .pagination import next_link
from .registry import EntitySet, SchemaRegistry, default_registry
from .request import PathSegment, QueryOptions, StaRequest, format_key
from .services import EntityServiceRepository


@dataclass
class CollectionResponse:
    entity_set: EntitySet
    values: List[Dict[str, Any]]
    count: Optional[int] = None
    next_link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        if self.count is not None:
            result["@iot.count"] = self.count
        if self.next_link is not None:
            result["@iot.nextLink"] = self.next_link
        result["value"] = self.values
        return result


@dataclass
class EntityResponse:
    entity_set: EntitySet
    value: Dict[str, Any]


def expand_depth(options: QueryOptions) -> int:
    """
    :return: nesting depth of the $expand option
    """
    return max((1 + expand_depth(item.options) for item in options.expand), default=0)


class QueryOptionsHandler:
    """
    Apply $filter, $expand and $select to the fetched entities
    """

    def __init__(self, registry: SchemaRegistry, annotator: EntityAnnotator, filter_parser: FilterParser) -> None:
        self.registry = registry
        self.annotator = annotator
        self.filter_parser = filter_parser
        self.collection_resolver = None
        self.entity_resolver = None

    def register_resolvers(self, collection_resolver: "EntityCollectionRequestResolver", entity_resolver: "EntityRequestResolver") -> None:
        """
        The resolvers used to expand relations
        """
        self.collection_resolver = collection_resolver
        self.entity_resolver = entity_resolver

    def filter_predicate(self, entity_set: EntitySet, options: QueryOptions):
        if options.filter is None:
            return None
        return self.filter_parser.parse(options.filter, entity_set)

    def check_expand_depth(self, options: QueryOptions) -> None:
        depth = expand_depth(options)
        max_depth = get_int_config("MAX_EXPAND_DEPTH")
        if depth > max_depth:
            raise ValidationError(f"$expand is nested {depth} levels deep, the maximum is {max_depth}")

    def shape(self, entity_set: EntitySet, entity: Any, options: QueryOptions) -> Dict[str, Any]:
        """
        :return: response dict for `entity` with expansions merged in and $select applied
        """
        data = self.annotator.to_dict(entity_set, entity, options.base_uri)
        if options.has_expand:
            self.handle_expand_option(entity_set, entity, data, options)
        # $select only trims, it runs after the expanded relations are in place
        expanded = [item.relation for item in options.expand]
        return self.annotator.apply_select(entity_set, data, options.select, expanded)

    def handle_expand_option(self, entity_set: EntitySet, entity: Any, data: Dict[str, Any], options: QueryOptions) -> None:
        """
        Resolve every relation in the $expand option and merge it into `data`
        """
        if self.collection_resolver is None or self.entity_resolver is None:
            raise RuntimeError("QueryOptionsHandler has no resolvers registered")

        source = PathSegment(entity_set.name, entity.identifier, format_key(entity.identifier))
        for item in options.expand:
            nav = self.registry.resolve_navigation(entity_set, item.relation)
            request = StaRequest((source, PathSegment(item.relation)), item.options)
            if nav.many:
                response = self.collection_resolver.resolve(request)
                data[item.relation] = response.values
                if response.count is not None:
                    data[f"{item.relation}@iot.count"] = response.count
                if response.next_link is not None:
                    data[f"{item.relation}@iot.nextLink"] = response.next_link
            else:
                try:
                    data[item.relation] = self.entity_resolver.resolve(request).value
                except NotFoundError:
                    # the relation isn't set
                    data[item.relation] = None


class EntityCollectionRequestResolver:
    def __init__(self, services: EntityServiceRepository, navigation: NavigationResolver, options_handler: QueryOptionsHandler) -> None:
        self.services = services
        self.navigation = navigation
        self.options_handler = options_handler

    def resolve(self, request: StaRequest, context: Optional[NavigationContext] = None) -> CollectionResponse:
        """
        :param request: request addressing a collection, eg. Things or Things(1)/Locations
        :param context: the resolved path of `request`, if the caller already has it
        :return: CollectionResponse
        """
        options = request.options
        self.options_handler.check_expand_depth(options)
        if context is None:
            context = self.navigation.resolve_chain(request.path_segments)
        if context.is_entity:
            raise InvalidNavigationError(f"{'/'.join(str(s) for s in request.path_segments)} is not a collection")

        target = context.target_set
        service = self.services.get_entity_service(target.name)
        predicate = self.options_handler.filter_predicate(target, options)
        if context.source_set is None:
            entities = service.fetch_collection(predicate, options.orderby, options.skip, options.top)
            total = service.count(predicate)
        else:
            scope = (context.source_id, context.source_set, context.target_property)
            entities = service.fetch_related(*scope, predicate, options.orderby, options.skip, options.top)
            total = service.count_related(*scope, predicate)

        link = next_link(total, options.skip, options.top, request.path_segments, context, options.base_uri, options.raw)
        values = [self.options_handler.shape(target, entity, options) for entity in entities]
        stacore.log.debug(f"{target.name}: {len(values)} of {total}")
        return CollectionResponse(target, values, total if options.count else None, link)


class EntityRequestResolver:
    def __init__(self, services: EntityServiceRepository, navigation: NavigationResolver, options_handler: QueryOptionsHandler) -> None:
        self.services = services
        self.navigation = navigation
        self.options_handler = options_handler

    def fetch_entity(self, segments: Tuple[PathSegment, ...]) -> Tuple[EntitySet, Any]:
        """
        :return: entity set and model instance addressed by `segments`
        :raise NotFoundError: no such entity
        """
        return self.fetch(self.navigation.resolve_chain(segments), segments)

    def fetch(self, context: NavigationContext, segments: Tuple[PathSegment, ...] = ()) -> Tuple[EntitySet, Any]:
        """
        :return: entity set and model instance addressed by the resolved path `context`
        """
        if not context.is_entity:
            raise InvalidNavigationError(f"{'/'.join(str(s) for s in segments) or context.target_set.name} requires an id")
        service = self.services.get_entity_service(context.target_set.name)
        if context.source_set is None:
            return context.target_set, service.fetch_one(context.target_id)
        entity = service.fetch_related_one(context.source_id, context.source_set, context.target_property, context.target_id)
        return context.target_set, entity

    def resolve(self, request: StaRequest, context: Optional[NavigationContext] = None) -> EntityResponse:
        """
        :param request: request addressing one entity, eg. Things(1) or HistoricalLocations(1)/Thing
        :param context: the resolved path of `request`, if the caller already has it
        :return: EntityResponse
        """
        self.options_handler.check_expand_depth(request.options)
        if context is None:
            context = self.navigation.resolve_chain(request.path_segments)
        entity_set, entity = self.fetch(context, request.path_segments)
        return EntityResponse(entity_set, self.options_handler.shape(entity_set, entity, request.options))


def create_resolvers(
    registry: SchemaRegistry = None, services: EntityServiceRepository = None
) -> Tuple[EntityCollectionRequestResolver, EntityRequestResolver]:
    """
    Wire the resolvers and their collaborators

    :return: collection resolver, entity resolver
    """
    registry = registry or default_registry()
    services = services or EntityServiceRepository(registry)
    navigation = NavigationResolver(registry, services)
    options_handler = QueryOptionsHandler(registry, EntityAnnotator(), FilterParser(registry))
    collection_resolver = EntityCollectionRequestResolver(services, navigation, options_handler)
    entity_resolver = EntityRequestResolver(services, navigation, options_handler)
    options_handler.register_resolvers(collection_resolver, entity_resolver)
    return collection_resolver, entity_resolver
