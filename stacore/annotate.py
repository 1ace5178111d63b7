"""
Shape entities for the response

    {
        "@iot.id": "1",
        "@iot.selfLink": "http://localhost/sta/Things(1)",
        "name": "Weather Station",
        "description": "...",
        "properties": {...},
        "Locations@iot.navigationLink": "http://localhost/sta/Things(1)/Locations",
        "HistoricalLocations@iot.navigationLink": "http://localhost/sta/Things(1)/HistoricalLocations"
    }

Geometries are stored as WKT and rendered as GeoJSON geometry objects.
"""
import datetime
from typing import Any, Dict, Iterable

from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import mapping

import stacore
from .attr_parse import format_datetime
from .errors import GenericError, UnknownPropertyError
from .registry import EntitySet
from .request import format_key

ID_KEY = "@iot.id"
SELF_LINK_KEY = "@iot.selfLink"
NAVIGATION_LINK = "@iot.navigationLink"


def geometry_to_geojson(value: str) -> Dict[str, Any]:
    """
    :param value: WKT
    :return: GeoJSON geometry
    """
    if value is None:
        return None
    try:
        geojson = mapping(wkt.loads(value))
    except ShapelyError as exc:
        raise GenericError(f"Stored geometry can't be read: {exc}")
    return _lists(geojson)


def _lists(value):
    # shapely returns coordinates as tuples
    if isinstance(value, dict):
        return {key: _lists(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_lists(val) for val in value]
    return value


class EntityAnnotator:
    """
    Convert model instances to response dicts and apply $select
    """

    @staticmethod
    def self_link(entity_set: EntitySet, entity: Any, base_uri: str) -> str:
        return f"{base_uri.rstrip('/')}/{entity_set.name}({format_key(entity.identifier)})"

    def to_dict(self, entity_set: EntitySet, entity: Any, base_uri: str = "") -> Dict[str, Any]:
        """
        :param entity_set: entity set of `entity`
        :param entity: model instance
        :param base_uri: service root url
        :return: response dict
        """
        self_link = self.self_link(entity_set, entity, base_uri)
        result = {ID_KEY: entity.identifier, SELF_LINK_KEY: self_link}
        for wire_name, attr_name in entity_set.properties.items():
            result[wire_name] = self.format_value(entity_set, wire_name, getattr(entity, attr_name))
        for nav_name in entity_set.navigation:
            result[f"{nav_name}{NAVIGATION_LINK}"] = f"{self_link}/{nav_name}"
        return result

    @staticmethod
    def format_value(entity_set: EntitySet, wire_name: str, value: Any) -> Any:
        if wire_name == entity_set.geometry_property:
            return geometry_to_geojson(value)
        if isinstance(value, datetime.datetime):
            return format_datetime(value)
        return value

    @staticmethod
    def apply_select(entity_set: EntitySet, data: Dict[str, Any], select: Iterable[str], expanded: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Keep the selected properties and navigation links.
        The id, the self link and the expanded relations are always kept.

        :param data: response dict (expansions already merged)
        :param select: $select property names
        :param expanded: names of the expanded relations
        """
        select = set(select)
        if not select:
            return data
        unknown = select - set(entity_set.properties) - set(entity_set.navigation) - {"id", ID_KEY}
        if unknown:
            raise UnknownPropertyError(f"{', '.join(sorted(unknown))} in $select of {entity_set.name}")

        result = {}
        for key, value in data.items():
            name = key.split("@", 1)[0]
            if key in (ID_KEY, SELF_LINK_KEY) or name in select:
                result[key] = value
            elif name in expanded and not key.endswith(NAVIGATION_LINK):
                # the expanded relation and its @iot.count, @iot.nextLink
                result[key] = value
        stacore.log.debug(f"$select {sorted(select)} on {entity_set.name}")
        return result
