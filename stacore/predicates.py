"""
SensorThings filtering strategies: translate (property, operator, value) triples
into SQLAlchemy predicates

Relationship-valued properties are filtered with correlated existence subqueries:
the value is a subquery projecting the surrogate keys of the matching related rows
(cfr. `QuerySpecifications.get_id_subquery`), which is walked back through the join
chain until it yields keys that can be compared with the candidate row.
For example FeaturesOfInterest filtered by Observations:

    features.id IN (
        SELECT datasets.feature_id FROM datasets WHERE datasets.id IN (
            SELECT observations.dataset_id FROM observations WHERE observations.id IN (<value>)))
"""
from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from sqlalchemy import literal, select
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

import stacore
from .attr_parse import parse_datetime
from .config import get_config
from .errors import UnknownPropertyError, ValidationError
from .models import (
    Dataset,
    FeatureOfInterest,
    HistoricalLocation,
    Location,
    Observation,
    Thing,
    location_historical_location,
    thing_location,
)

OPERATORS = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}

# "application/vnd.geo json" is what arrives when the "+" wasn't url-encoded by the client
GEOJSON_VARIANTS = ("application/vnd.geo json",)


@dataclass(frozen=True)
class JoinHop:
    """
    One step of a relation chain: project `select` from the rows whose `match` column
    is in the inner key set
    """

    select: Any
    match: Any


@dataclass(frozen=True)
class RelatedFilter:
    """
    Join chain from the related entity's surrogate keys to `key`, a column of the candidate row
    """

    hops: Tuple[JoinHop, ...]
    key: Any

    def to_predicate(self, id_subquery: Select) -> ColumnElement:
        keys = id_subquery
        for hop in self.hops:
            keys = select(hop.select).where(hop.match.in_(keys)).correlate(None)
        return self.key.in_(keys)


def compare(column, operator_name: str, value: Any, switched: bool = False) -> ColumnElement:
    """
    :param column: column (left operand unless `switched`)
    :param operator_name: eq, ne, gt, ge, lt, le
    :param value: literal value
    :param switched: the literal appeared on the left side of the filter expression
    """
    op = OPERATORS.get(operator_name)
    if op is None:
        raise ValidationError(f'Unsupported operator "{operator_name}"')
    if value is None:
        if operator_name == "eq":
            return column.is_(None)
        if operator_name == "ne":
            return column.isnot(None)
        raise ValidationError(f'Operator "{operator_name}" can\'t be used with null')
    left, right = column, literal(value)
    if switched:
        left, right = right, left
    return op(left, right)


class QuerySpecifications:
    """
    Predicate builder for one entity set.
    Subclasses declare which properties can be filtered and how
    """

    model: Any = None
    string_properties: Dict[str, str] = {}
    number_properties: Dict[str, str] = {}
    datetime_properties: Dict[str, str] = {}
    enumerated_properties: Tuple[str, ...] = ()
    related: Dict[str, RelatedFilter] = {}

    @property
    def key(self):
        """
        :return: the surrogate key column
        """
        return self.model.id

    def build_predicate(self, property_name: str, operator_name: str, value: Any, switched: bool = False) -> ColumnElement:
        """
        :param property_name: wire property name, eg. "name" or "Observations"
        :param operator_name: eq, ne, gt, ge, lt, le
        :param value: literal, or a subquery of related surrogate keys for relationship properties
        :param switched: the literal appeared on the left side of the comparison
        :return: sqla predicate
        """
        if property_name in self.related:
            return self._related_predicate(property_name, operator_name, value)
        if property_name == "id":
            parsed = self._parse_int(value)
            if operator_name in ("eq", "ne"):
                return compare(self.model.identifier, operator_name, str(parsed), switched)
            # numeric identifiers are always generated from the surrogate key
            return compare(self.key, operator_name, parsed, switched)
        if property_name in self.enumerated_properties:
            return self._enumerated_predicate(operator_name, value)
        if property_name in self.string_properties:
            column = getattr(self.model, self.string_properties[property_name])
            return compare(column, operator_name, None if value is None else str(value), switched)
        if property_name in self.number_properties:
            column = getattr(self.model, self.number_properties[property_name])
            return compare(column, operator_name, self._parse_number(value), switched)
        if property_name in self.datetime_properties:
            column = getattr(self.model, self.datetime_properties[property_name])
            return compare(column, operator_name, parse_datetime(value), switched)

        raise UnknownPropertyError(f'No property "{property_name}" in {self.model.__name__}')

    def get_id_subquery(self, filter: ColumnElement = None) -> Select:
        """
        :param filter: predicate over this entity type
        :return: subquery projecting the surrogate keys of the matching rows
        """
        # the subquery may end up nested below a query on the same table
        query = select(self.key).correlate(None)
        if filter is not None:
            query = query.where(filter)
        return query

    def with_identifier(self, identifier: str) -> ColumnElement:
        return self.model.identifier == str(identifier)

    def is_related_to(self, property_name: str, source_specifications: "QuerySpecifications", source_id: str) -> ColumnElement:
        """
        :return: predicate selecting the rows related to the source entity through `property_name`
        """
        source_keys = source_specifications.get_id_subquery(source_specifications.with_identifier(source_id))
        return self._related_predicate(property_name, "eq", source_keys)

    def order_by(self, property_name: str, descending: bool = False):
        """
        :return: ordering clause for a scalar property
        """
        if property_name == "id":
            column = self.key
        else:
            attr_name = {**self.string_properties, **self.number_properties, **self.datetime_properties}.get(property_name)
            if attr_name is None:
                raise UnknownPropertyError(f'Can\'t order {self.model.__name__} by "{property_name}"')
            column = getattr(self.model, attr_name)
        return column.desc() if descending else column.asc()

    def _related_predicate(self, property_name: str, operator_name: str, value: Any) -> ColumnElement:
        if not isinstance(value, Select):
            raise ValidationError(f'"{property_name}" is a relationship, filter on one of its properties')
        if operator_name != "eq":
            raise ValidationError(f'Operator "{operator_name}" is not supported for relationship "{property_name}"')
        return self.related[property_name].to_predicate(value)

    def _enumerated_predicate(self, operator_name: str, value: Any) -> ColumnElement:
        """
        There is only one supported encoding: filtering by it matches every row,
        any other value matches nothing (this is not an error)
        """
        supported = (get_config("ENCODINGTYPE_GEOJSON"),) + GEOJSON_VARIANTS
        if operator_name == "eq" and value in supported:
            return self.key.isnot(None)
        stacore.log.debug(f"Unsupported {self.model.__name__} type filter: {operator_name} {value}")
        return self.key.is_(None)

    @staticmethod
    def _parse_int(value: Any) -> int:
        if isinstance(value, bool):
            raise ValidationError(f'Invalid id "{value}"')
        try:
            return int(str(value))
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid id "{value}"')

    @staticmethod
    def _parse_number(value: Any) -> float:
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValidationError(f'Invalid number "{value}"')
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid number "{value}"')


class ThingQuerySpecifications(QuerySpecifications):
    model = Thing
    string_properties = {"name": "name", "description": "description"}
    related = {
        "Locations": RelatedFilter((JoinHop(thing_location.c.thing_id, thing_location.c.location_id),), Thing.id),
        "HistoricalLocations": RelatedFilter((JoinHop(HistoricalLocation.thing_id, HistoricalLocation.id),), Thing.id),
    }


class LocationQuerySpecifications(QuerySpecifications):
    model = Location
    string_properties = {"name": "name", "description": "description"}
    enumerated_properties = ("encodingType",)
    related = {
        "Things": RelatedFilter((JoinHop(thing_location.c.location_id, thing_location.c.thing_id),), Location.id),
        "HistoricalLocations": RelatedFilter(
            (
                JoinHop(
                    location_historical_location.c.location_id,
                    location_historical_location.c.historical_location_id,
                ),
            ),
            Location.id,
        ),
    }


class HistoricalLocationQuerySpecifications(QuerySpecifications):
    model = HistoricalLocation
    datetime_properties = {"time": "time"}
    related = {
        "Thing": RelatedFilter((), HistoricalLocation.thing_id),
        "Locations": RelatedFilter(
            (
                JoinHop(
                    location_historical_location.c.historical_location_id,
                    location_historical_location.c.location_id,
                ),
            ),
            HistoricalLocation.id,
        ),
    }


class FeatureOfInterestQuerySpecifications(QuerySpecifications):
    model = FeatureOfInterest
    string_properties = {"name": "name", "description": "description"}
    enumerated_properties = ("encodingType", "featureType")
    related = {
        # observation -> dataset -> feature
        "Observations": RelatedFilter(
            (JoinHop(Observation.dataset_id, Observation.id), JoinHop(Dataset.feature_id, Dataset.id)),
            FeatureOfInterest.id,
        ),
    }


class ObservationQuerySpecifications(QuerySpecifications):
    model = Observation
    number_properties = {"result": "result"}
    datetime_properties = {"phenomenonTime": "phenomenon_time"}
    related = {
        "FeatureOfInterest": RelatedFilter((JoinHop(Dataset.id, Dataset.feature_id),), Observation.dataset_id),
    }


QUERY_SPECIFICATIONS: Dict[str, QuerySpecifications] = {
    "Things": ThingQuerySpecifications(),
    "Locations": LocationQuerySpecifications(),
    "HistoricalLocations": HistoricalLocationQuerySpecifications(),
    "FeaturesOfInterest": FeatureOfInterestQuerySpecifications(),
    "Observations": ObservationQuerySpecifications(),
}


def get_query_specifications(entity_set_name: str) -> QuerySpecifications:
    try:
        return QUERY_SPECIFICATIONS[entity_set_name]
    except KeyError:
        raise UnknownPropertyError(f'No filterable entity set "{entity_set_name}"')


def build_predicate(entity_set_name: str, property_name: str, operator_name: str, value: Any, switched: bool = False) -> ColumnElement:
    """
    Build the predicate for `property_name` of the `entity_set_name` entity type
    """
    return get_query_specifications(entity_set_name).build_predicate(property_name, operator_name, value, switched)
