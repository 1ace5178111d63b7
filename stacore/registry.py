"""
Entity set and relationship metadata

The registry answers two questions for the resolvers:
- is entity set B reachable from entity set A via navigation property R
- what is the surrogate key column of the model behind an entity set
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

from .errors import InvalidNavigationError
from .models import Thing, Location, HistoricalLocation, FeatureOfInterest, Observation


@dataclass(frozen=True)
class NavigationProperty:
    """
    name: navigation property name as used in urls and payloads (eg. "Locations", "Thing")
    target: name of the target entity set
    many: whether the property holds a collection
    inverse: name of the navigation property on the target pointing back
    """

    name: str
    target: str
    many: bool
    inverse: str


@dataclass(frozen=True)
class EntitySet:
    name: str
    model: Any
    properties: Mapping[str, str] = field(default_factory=dict)  # wire name -> model attribute
    navigation: Mapping[str, NavigationProperty] = field(default_factory=dict)
    geometry_property: Optional[str] = None

    def __repr__(self):
        return f"<EntitySet {self.name}>"

    def get_navigation(self, property_name: str) -> Optional[NavigationProperty]:
        return self.navigation.get(property_name)


def _nav(name, target, many, inverse):
    return name, NavigationProperty(name, target, many, inverse)


class SchemaRegistry:
    """
    Lookup table of the exposed entity sets
    """

    def __init__(self, entity_sets: Mapping[str, EntitySet]) -> None:
        self._entity_sets = dict(entity_sets)

    def __iter__(self) -> Iterator[EntitySet]:
        return iter(self._entity_sets.values())

    def __contains__(self, name: str) -> bool:
        return name in self._entity_sets

    def get_entity_set(self, name: str) -> EntitySet:
        """
        :param name: entity set name, eg. "Things"
        :return: EntitySet
        """
        try:
            return self._entity_sets[name]
        except KeyError:
            raise InvalidNavigationError(f'No entity set "{name}"')

    def resolve_navigation(self, source: EntitySet, property_name: str) -> NavigationProperty:
        """
        :return: the navigation property `property_name` declared on `source`
        """
        nav = source.get_navigation(property_name)
        if nav is None:
            raise InvalidNavigationError(f"{source.name} has no relationship {property_name}")
        return nav

    def is_reachable(self, source: EntitySet, target: EntitySet, property_name: str) -> bool:
        nav = source.get_navigation(property_name)
        return nav is not None and nav.target == target.name

    @staticmethod
    def surrogate_key(entity_set: EntitySet) -> str:
        """
        :return: name of the surrogate key column
        """
        return entity_set.model.__mapper__.primary_key[0].key


ENTITY_SETS: Dict[str, EntitySet] = {
    "Things": EntitySet(
        "Things",
        Thing,
        {"name": "name", "description": "description", "properties": "properties"},
        dict(
            [
                _nav("Locations", "Locations", True, "Things"),
                _nav("HistoricalLocations", "HistoricalLocations", True, "Thing"),
            ]
        ),
    ),
    "Locations": EntitySet(
        "Locations",
        Location,
        {"name": "name", "description": "description", "encodingType": "encoding_type", "location": "geometry"},
        dict(
            [
                _nav("Things", "Things", True, "Locations"),
                _nav("HistoricalLocations", "HistoricalLocations", True, "Locations"),
            ]
        ),
        geometry_property="location",
    ),
    "HistoricalLocations": EntitySet(
        "HistoricalLocations",
        HistoricalLocation,
        {"time": "time"},
        dict(
            [
                _nav("Thing", "Things", False, "HistoricalLocations"),
                _nav("Locations", "Locations", True, "HistoricalLocations"),
            ]
        ),
    ),
    "FeaturesOfInterest": EntitySet(
        "FeaturesOfInterest",
        FeatureOfInterest,
        {"name": "name", "description": "description", "encodingType": "encoding_type", "feature": "geometry"},
        dict([_nav("Observations", "Observations", True, "FeatureOfInterest")]),
        geometry_property="feature",
    ),
    "Observations": EntitySet(
        "Observations",
        Observation,
        {"phenomenonTime": "phenomenon_time", "result": "result"},
        dict([_nav("FeatureOfInterest", "FeaturesOfInterest", False, "Observations")]),
    ),
}


def default_registry() -> SchemaRegistry:
    return SchemaRegistry(ENTITY_SETS)
