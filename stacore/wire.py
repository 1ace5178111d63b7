"""
Wire (JSON) <-> entity conversion

A payload is first deserialized field by field into an immutable `WireEntity` record,
validated by `validate` and then converted into session-less model instances by `to_entity`.
Nothing is added to the database session here: the entity service does that inside one
write transaction, so a failing nested conversion leaves no partial graph behind.
The service passes a `resolve_reference` callable to link REFERENCE objects to stored rows.

Conversion modes:
- FULL: creation. Mandatory fields must be present. Embedded related objects are converted
  FULL for their own fields and REFERENCE for their relations (one level deep).
  An embedded object carrying only "@iot.id" is a link to an existing entity.
- PATCH: partial update. Only supplied fields are validated and applied,
  embedded relations are links (REFERENCE).
- REFERENCE: link only. Any field besides "@iot.id" is an error.

Back-reference: an entity created through a navigation path, eg. POST Things(1)/Locations,
receives the link to its parent as a pending `BackReference`. It is injected as a single
element relation before validation, declaring the same relation in the payload is a
`DuplicateReferenceError`.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from shapely.errors import ShapelyError
from shapely.geometry import shape

import stacore
from .attr_parse import parse_datetime
from .config import get_config
from .errors import DuplicateReferenceError, ValidationError
from .models import FeatureOfInterest, HistoricalLocation, Location, Thing

INVALID_INLINE_ENTITY_MISSING = "Invalid nested entity. Missing "
INVALID_REFERENCED_ENTITY = "Referenced entity may only contain @iot.id"
INVALID_ENCODINGTYPE = "Invalid encodingType supplied. Only GeoJSON (application/vnd.geo+json) is supported!"
COULD_NOT_PARSE = "Could not parse geometry to GeoJSON. Error was: "

ID_KEY = "@iot.id"
IGNORED_SUFFIXES = ("@iot.selfLink", "@iot.navigationLink")

# attribute set on converted instances: (mode, supplied attribute names)
_WIRE_STATE = "_sta_wire_state"

ReferenceResolver = Callable[["EntityKind", str], Any]


class Mode(Enum):
    FULL = "full"
    PATCH = "patch"
    REFERENCE = "reference"


class EntityKind(Enum):
    THING = "Things"
    LOCATION = "Locations"
    HISTORICAL_LOCATION = "HistoricalLocations"
    FEATURE_OF_INTEREST = "FeaturesOfInterest"

    @classmethod
    def from_entity_set(cls, name: str) -> "EntityKind":
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(f"{name} can't be created or updated")


@dataclass(frozen=True)
class BackReference:
    """
    relation: relation of the converted entity pointing to the parent, eg. "Things"
    identifier: external identifier of the parent
    """

    relation: str
    identifier: str


@dataclass(frozen=True)
class WireEntity:
    """
    Deserialized payload. Only populated (non-null) members are stored.
    """

    kind: EntityKind
    identifier: Optional[str] = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    relations: Mapping[str, Tuple["WireEntity", ...]] = field(default_factory=dict)

    @property
    def is_reference_only(self) -> bool:
        return self.identifier is not None and not self.fields and not self.relations


@dataclass(frozen=True)
class RelationSpec:
    kind: EntityKind
    attribute: str
    many: bool = True


@dataclass(frozen=True)
class KindSpec:
    """
    model: sqla model class
    fields: wire field name -> model attribute
    mandatory: fields required in FULL mode
    relations: wire relation name -> RelationSpec, every relation can be back-referenced
    parsers: wire field name -> callable(value, field name) converting the wire value
    """

    model: Any
    fields: Mapping[str, str]
    mandatory: Tuple[str, ...]
    relations: Mapping[str, RelationSpec]
    parsers: Mapping[str, Callable[[Any, str], Any]] = field(default_factory=dict)


def parse_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f'"{field_name}" must be a string')
    return value


def parse_encoding_type(value: Any, field_name: str) -> str:
    if value != get_config("ENCODINGTYPE_GEOJSON"):
        raise ValidationError(INVALID_ENCODINGTYPE)
    return value


def parse_properties(value: Any, field_name: str) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f'"{field_name}" must be a JSON object')
    return value


def parse_time(value: Any, field_name: str):
    return parse_datetime(value)


def parse_geometry(value: Any, field_name: str) -> str:
    """
    Accept a bare GeoJSON geometry or a Feature wrapping one

    :return: WKT
    """
    if not isinstance(value, dict):
        raise ValidationError(f"{INVALID_INLINE_ENTITY_MISSING}{field_name}->type")
    if "geometry" in value:
        if value.get("type") != "Feature":
            raise ValidationError(f"{INVALID_INLINE_ENTITY_MISSING}{field_name}->type")
        geometry = value.get("geometry")
        if geometry is None:
            raise ValidationError(f"{INVALID_INLINE_ENTITY_MISSING}{field_name}->geometry")
    else:
        if not value.get("type"):
            raise ValidationError(f"{INVALID_INLINE_ENTITY_MISSING}{field_name}->type")
        if value.get("coordinates") is None and value.get("geometries") is None:
            raise ValidationError(f"{INVALID_INLINE_ENTITY_MISSING}{field_name}->geometry")
        geometry = value
    try:
        return shape(geometry).wkt
    except (ShapelyError, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
        raise ValidationError(COULD_NOT_PARSE + str(exc))


KIND_SPECS: Dict[EntityKind, KindSpec] = {
    EntityKind.THING: KindSpec(
        model=Thing,
        fields={"name": "name", "description": "description", "properties": "properties"},
        mandatory=("name", "description"),
        relations={
            "Locations": RelationSpec(EntityKind.LOCATION, "locations"),
            "HistoricalLocations": RelationSpec(EntityKind.HISTORICAL_LOCATION, "historical_locations"),
        },
        parsers={"name": parse_text, "description": parse_text, "properties": parse_properties},
    ),
    EntityKind.LOCATION: KindSpec(
        model=Location,
        fields={"name": "name", "description": "description", "encodingType": "encoding_type", "location": "geometry"},
        mandatory=("name", "description", "encodingType", "location"),
        relations={
            "Things": RelationSpec(EntityKind.THING, "things"),
            "HistoricalLocations": RelationSpec(EntityKind.HISTORICAL_LOCATION, "historical_locations"),
        },
        parsers={
            "name": parse_text,
            "description": parse_text,
            "encodingType": parse_encoding_type,
            "location": parse_geometry,
        },
    ),
    EntityKind.HISTORICAL_LOCATION: KindSpec(
        model=HistoricalLocation,
        fields={"time": "time"},
        mandatory=("time",),
        relations={
            "Thing": RelationSpec(EntityKind.THING, "thing", many=False),
            "Locations": RelationSpec(EntityKind.LOCATION, "locations"),
        },
        parsers={"time": parse_time},
    ),
    EntityKind.FEATURE_OF_INTEREST: KindSpec(
        model=FeatureOfInterest,
        fields={"name": "name", "description": "description", "encodingType": "encoding_type", "feature": "geometry"},
        mandatory=("name", "description", "encodingType", "feature"),
        relations={},
        parsers={
            "name": parse_text,
            "description": parse_text,
            "encodingType": parse_encoding_type,
            "feature": parse_geometry,
        },
    ),
}


def parse_wire(kind: EntityKind, payload: Any) -> WireEntity:
    """
    Deserialize `payload` into a WireEntity, member by member

    :param kind: expected entity kind
    :param payload: decoded JSON object
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Invalid {kind.value} payload: expected a JSON object")
    spec = KIND_SPECS[kind]
    identifier = None
    fields = {}
    relations = {}
    for key, value in payload.items():
        if key == ID_KEY:
            if value is not None:
                identifier = str(value)
        elif key in spec.fields:
            if value is not None:
                fields[key] = value
        elif key in spec.relations:
            if value is None:
                continue
            relation = spec.relations[key]
            if relation.many:
                if not isinstance(value, list):
                    raise ValidationError(f'"{key}" must be an array')
                relations[key] = tuple(parse_wire(relation.kind, item) for item in value)
            else:
                if isinstance(value, list):
                    raise ValidationError(f'"{key}" must be a single object')
                relations[key] = (parse_wire(relation.kind, value),)
        elif key.endswith(IGNORED_SUFFIXES):
            continue
        else:
            raise ValidationError(f'Invalid member "{key}" for {kind.value}')
    return WireEntity(kind, identifier, fields, relations)


def apply_back_reference(wire: WireEntity, back_reference: BackReference) -> WireEntity:
    """
    :return: copy of `wire` with the parent link injected as a single element relation
    """
    relation = KIND_SPECS[wire.kind].relations.get(back_reference.relation)
    if relation is None:
        raise ValidationError(f"Invalid back reference {back_reference.relation} for {wire.kind.value}")
    if back_reference.relation in wire.relations:
        raise DuplicateReferenceError(
            f"{back_reference.relation} is given in the payload and implied by the request path"
        )
    link = WireEntity(relation.kind, str(back_reference.identifier))
    return replace(wire, relations={**wire.relations, back_reference.relation: (link,)})


def validate(wire: WireEntity, mode: Mode) -> None:
    """
    Check `wire` against the rules of `mode`, nested entities are validated when they're converted
    """
    spec = KIND_SPECS[wire.kind]
    if mode is Mode.REFERENCE:
        if wire.identifier is None:
            raise ValidationError(f"Referenced {wire.kind.value} entity is missing {ID_KEY}")
        if wire.fields or wire.relations:
            raise ValidationError(INVALID_REFERENCED_ENTITY)
        return

    if mode is Mode.FULL:
        for field_name in spec.mandatory:
            if field_name not in wire.fields:
                raise ValidationError(INVALID_INLINE_ENTITY_MISSING + field_name)

    # the encoding type is checked before the geometry
    for field_name in sorted(wire.fields, key=lambda name: name != "encodingType"):
        parser = spec.parsers.get(field_name)
        if parser is not None:
            parser(wire.fields[field_name], field_name)


def to_entity(
    wire: WireEntity,
    mode: Mode,
    back_reference: Optional[BackReference] = None,
    nested_mode: Optional[Mode] = None,
    resolve_reference: Optional[ReferenceResolver] = None,
) -> Any:
    """
    Convert `wire` into a (session-less) model instance

    :param wire: deserialized payload
    :param mode: conversion mode
    :param back_reference: pending link to the parent introduced by the request path
    :param nested_mode: mode of this object's own relations, REFERENCE for embedded FULL objects
    :param resolve_reference: callable(kind, identifier) returning the stored entity a REFERENCE
        points to, without it a REFERENCE yields an instance carrying only the identifier
    :return: model instance
    """
    if back_reference is not None:
        wire = apply_back_reference(wire, back_reference)
    validate(wire, mode)

    if mode is Mode.REFERENCE and resolve_reference is not None:
        return resolve_reference(wire.kind, wire.identifier)

    spec = KIND_SPECS[wire.kind]
    entity = spec.model()
    supplied = set()
    if wire.identifier is not None:
        entity.identifier = wire.identifier
        supplied.add("identifier")

    if mode is Mode.REFERENCE:
        setattr(entity, _WIRE_STATE, (mode, frozenset(supplied)))
        return entity

    for field_name, value in wire.fields.items():
        parser = spec.parsers.get(field_name)
        attr_name = spec.fields[field_name]
        setattr(entity, attr_name, parser(value, field_name) if parser else value)
        supplied.add(attr_name)

    for relation_name, items in wire.relations.items():
        relation = spec.relations[relation_name]
        related = [_convert_related(item, mode, nested_mode, resolve_reference) for item in items]
        if relation.many:
            getattr(entity, relation.attribute).extend(related)
        else:
            setattr(entity, relation.attribute, related[0])
        supplied.add(relation.attribute)

    stacore.log.debug(f"Converted {wire.kind.value} payload ({mode.value}): {sorted(supplied)}")
    setattr(entity, _WIRE_STATE, (mode, frozenset(supplied)))
    return entity


def _convert_related(item: WireEntity, mode: Mode, nested_mode: Optional[Mode], resolve_reference) -> Any:
    if mode is Mode.PATCH or nested_mode is Mode.REFERENCE or item.is_reference_only:
        return to_entity(item, Mode.REFERENCE, resolve_reference=resolve_reference)
    return to_entity(item, Mode.FULL, nested_mode=Mode.REFERENCE, resolve_reference=resolve_reference)


def convert(
    kind: EntityKind,
    payload: Any,
    mode: Mode,
    back_reference: Optional[BackReference] = None,
    resolve_reference: Optional[ReferenceResolver] = None,
) -> Any:
    """
    Deserialize and convert a payload in one step
    """
    return to_entity(parse_wire(kind, payload), mode, back_reference, resolve_reference=resolve_reference)


def is_reference(entity: Any) -> bool:
    """
    :return: True if `entity` is a link to an existing entity (REFERENCE conversion result)
    """
    state = getattr(entity, _WIRE_STATE, None)
    return state is not None and state[0] is Mode.REFERENCE


def supplied_attributes(entity: Any) -> FrozenSet[str]:
    """
    :return: model attribute names set by the conversion, used to apply PATCH results
    """
    state = getattr(entity, _WIRE_STATE, None)
    return state[1] if state is not None else frozenset()
