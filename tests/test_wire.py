import dataclasses

import pytest
from shapely import wkt
from shapely.geometry import shape

from stacore.annotate import EntityAnnotator
from stacore.errors import DuplicateReferenceError, ValidationError
from stacore.registry import default_registry
from stacore.wire import (
    KIND_SPECS,
    BackReference,
    EntityKind,
    Mode,
    WireEntity,
    convert,
    is_reference,
    parse_wire,
    supplied_attributes,
    to_entity,
)

GEOJSON = "application/vnd.geo+json"
POINT = {"type": "Point", "coordinates": [7.1, 52.0]}

MINIMAL = {
    EntityKind.THING: {"@iot.id": "t1", "name": "Station", "description": "roof", "properties": {"owner": "lab"}},
    EntityKind.LOCATION: {"@iot.id": "l1", "name": "Roof", "description": "lab roof", "encodingType": GEOJSON, "location": POINT},
    EntityKind.HISTORICAL_LOCATION: {"@iot.id": "h1", "time": "2019-01-01T00:00:00Z"},
    EntityKind.FEATURE_OF_INTEREST: {"@iot.id": "f1", "name": "Field", "description": "wheat", "encodingType": GEOJSON, "feature": POINT},
}


def minimal(kind, **extra):
    return dict(MINIMAL[kind], **extra)


@pytest.mark.parametrize("kind", list(EntityKind))
def test_minimal_full_payload_round_trip(kind):
    payload = minimal(kind)
    entity = convert(kind, payload, Mode.FULL)
    shaped = EntityAnnotator().to_dict(default_registry().get_entity_set(kind.value), entity)
    for field_name, value in payload.items():
        if field_name in ("location", "feature"):
            assert shape(shaped[field_name]).equals(shape(value))
        else:
            assert shaped[field_name] == value


def test_point_geometry():
    location = convert(EntityKind.LOCATION, minimal(EntityKind.LOCATION), Mode.FULL)
    point = wkt.loads(location.geometry)
    assert point.geom_type == "Point"
    assert (point.x, point.y) == (7.1, 52.0)


def test_feature_wrapped_geometry():
    payload = minimal(EntityKind.LOCATION, location={"type": "Feature", "geometry": POINT, "properties": {}})
    location = convert(EntityKind.LOCATION, payload, Mode.FULL)
    assert wkt.loads(location.geometry).equals(shape(POINT))


@pytest.mark.parametrize(
    "geometry",
    [{"type": "Point"}, {"type": "Point", "coordinates": None}, {"type": "Feature", "geometry": None}],
)
def test_missing_geometry(geometry):
    with pytest.raises(ValidationError) as exc_info:
        convert(EntityKind.LOCATION, minimal(EntityKind.LOCATION, location=geometry), Mode.FULL)
    assert "location->geometry" in exc_info.value.message


@pytest.mark.parametrize("geometry", [{"type": "Blob", "coordinates": [1, 2]}, {"type": "Point", "coordinates": ["a", "b"]}])
def test_unparsable_geometry(geometry):
    with pytest.raises(ValidationError) as exc_info:
        convert(EntityKind.FEATURE_OF_INTEREST, minimal(EntityKind.FEATURE_OF_INTEREST, feature=geometry), Mode.FULL)
    assert "Could not parse geometry to GeoJSON" in exc_info.value.message


def test_encoding_type_is_checked_first():
    payload = minimal(EntityKind.LOCATION, encodingType="application/json", location={"type": "Blob"})
    with pytest.raises(ValidationError) as exc_info:
        convert(EntityKind.LOCATION, payload, Mode.FULL)
    assert "Invalid encodingType supplied" in exc_info.value.message


@pytest.mark.parametrize("kind", list(EntityKind))
def test_missing_mandatory_field(kind):
    for field_name in KIND_SPECS[kind].mandatory:
        payload = minimal(kind)
        del payload[field_name]
        with pytest.raises(ValidationError) as exc_info:
            convert(kind, payload, Mode.FULL)
        assert exc_info.value.message.endswith(f"Missing {field_name}")


def test_invalid_field_values():
    with pytest.raises(ValidationError):
        convert(EntityKind.THING, minimal(EntityKind.THING, name=5), Mode.FULL)
    with pytest.raises(ValidationError):
        convert(EntityKind.THING, minimal(EntityKind.THING, properties="x"), Mode.FULL)
    with pytest.raises(ValidationError):
        convert(EntityKind.HISTORICAL_LOCATION, {"time": "yesterday"}, Mode.FULL)


@pytest.mark.parametrize("kind", list(EntityKind))
def test_reference(kind):
    entity = convert(kind, {"@iot.id": 5}, Mode.REFERENCE)
    assert entity.identifier == "5"
    assert is_reference(entity)
    assert supplied_attributes(entity) == {"identifier"}


@pytest.mark.parametrize(
    "kind, field_name", [(kind, field_name) for kind in EntityKind for field_name in KIND_SPECS[kind].fields]
)
def test_reference_with_field_fails(kind, field_name):
    with pytest.raises(ValidationError):
        convert(kind, {"@iot.id": "5", field_name: MINIMAL[kind].get(field_name, "x")}, Mode.REFERENCE)


def test_reference_with_relation_or_without_id_fails():
    with pytest.raises(ValidationError):
        convert(EntityKind.LOCATION, {"@iot.id": "5", "Things": [{"@iot.id": "1"}]}, Mode.REFERENCE)
    with pytest.raises(ValidationError):
        convert(EntityKind.LOCATION, {}, Mode.REFERENCE)


def test_patch_only_sets_supplied_fields():
    thing = convert(EntityKind.THING, {"name": "Renamed"}, Mode.PATCH)
    assert thing.name == "Renamed"
    assert thing.description is None
    assert supplied_attributes(thing) == {"name"}


def test_patch_validates_supplied_fields():
    convert(EntityKind.LOCATION, {}, Mode.PATCH)
    with pytest.raises(ValidationError):
        convert(EntityKind.LOCATION, {"encodingType": "text/plain"}, Mode.PATCH)
    with pytest.raises(ValidationError):
        convert(EntityKind.LOCATION, {"location": {"type": "Point"}}, Mode.PATCH)


def test_patch_relations_are_references():
    thing = convert(EntityKind.THING, {"Locations": [{"@iot.id": "2"}]}, Mode.PATCH)
    assert [is_reference(location) for location in thing.locations] == [True]
    with pytest.raises(ValidationError):
        convert(EntityKind.THING, {"Locations": [MINIMAL[EntityKind.LOCATION]]}, Mode.PATCH)


def test_embedded_entities():
    payload = minimal(
        EntityKind.THING,
        Locations=[
            {"@iot.id": "2"},
            minimal(EntityKind.LOCATION, Things=[{"@iot.id": "3"}]),
        ],
    )
    thing = convert(EntityKind.THING, payload, Mode.FULL)
    linked, created = thing.locations
    assert is_reference(linked)
    assert not is_reference(created)
    assert created.name == "Roof"
    # the embedded location links the new thing and Thing 3
    assert sorted(str(t.identifier) for t in created.things) == ["3", "t1"]
    assert is_reference(created.things[0])


def test_embedded_entities_link_only_below_first_level():
    payload = minimal(
        EntityKind.THING,
        Locations=[minimal(EntityKind.LOCATION, HistoricalLocations=[{"time": "2019-01-01T00:00:00Z"}])],
    )
    with pytest.raises(ValidationError):
        convert(EntityKind.THING, payload, Mode.FULL)


def test_back_reference():
    location = convert(EntityKind.LOCATION, minimal(EntityKind.LOCATION), Mode.FULL, BackReference("Things", "7"))
    assert [thing.identifier for thing in location.things] == ["7"]
    assert is_reference(location.things[0])

    historical_location = convert(
        EntityKind.HISTORICAL_LOCATION, minimal(EntityKind.HISTORICAL_LOCATION), Mode.FULL, BackReference("Thing", "7")
    )
    assert historical_location.thing.identifier == "7"


def test_back_reference_is_merged_with_other_relations():
    payload = minimal(EntityKind.LOCATION, HistoricalLocations=[{"@iot.id": "1"}])
    location = convert(EntityKind.LOCATION, payload, Mode.FULL, BackReference("Things", "7"))
    assert [thing.identifier for thing in location.things] == ["7"]
    assert [hl.identifier for hl in location.historical_locations] == ["1"]


@pytest.mark.parametrize(
    "kind, relation", [(kind, relation) for kind in EntityKind for relation in KIND_SPECS[kind].relations]
)
def test_duplicate_reference(kind, relation):
    link = {"@iot.id": "9"}
    value = [link] if KIND_SPECS[kind].relations[relation].many else link
    payload = minimal(kind, **{relation: value})
    with pytest.raises(DuplicateReferenceError):
        convert(kind, payload, Mode.FULL, BackReference(relation, "1"))


def test_invalid_back_reference():
    with pytest.raises(ValidationError):
        convert(EntityKind.FEATURE_OF_INTEREST, minimal(EntityKind.FEATURE_OF_INTEREST), Mode.FULL, BackReference("Things", "1"))


def test_resolve_reference():
    stored = {}

    def resolve(kind, identifier):
        stored[identifier] = kind
        return KIND_SPECS[kind].model(identifier=f"stored-{identifier}")

    location = to_entity(
        parse_wire(EntityKind.LOCATION, minimal(EntityKind.LOCATION)), Mode.FULL, BackReference("Things", "7"), resolve_reference=resolve
    )
    assert stored == {"7": EntityKind.THING}
    assert location.things[0].identifier == "stored-7"


def test_parse_wire():
    payload = minimal(EntityKind.THING, **{"@iot.selfLink": "x", "Locations@iot.navigationLink": "y", "description": None})
    wire = parse_wire(EntityKind.THING, payload)
    assert wire.identifier == "t1"
    assert set(wire.fields) == {"name", "properties"}
    assert wire.relations == {}
    with pytest.raises(dataclasses.FrozenInstanceError):
        wire.identifier = "t2"


@pytest.mark.parametrize(
    "payload",
    [[], "x", {"color": "red"}, {"Locations": {"@iot.id": "1"}}, {"Locations": ["x"]}, {"Datastreams": []}],
)
def test_parse_wire_rejects(payload):
    with pytest.raises(ValidationError):
        parse_wire(EntityKind.THING, payload)


def test_parse_singular_relation():
    wire = parse_wire(EntityKind.HISTORICAL_LOCATION, {"time": "2019-01-01T00:00:00Z", "Thing": {"@iot.id": 1}})
    assert wire.relations["Thing"] == (WireEntity(EntityKind.THING, "1"),)
    with pytest.raises(ValidationError):
        parse_wire(EntityKind.HISTORICAL_LOCATION, {"Thing": [{"@iot.id": 1}]})


def test_observations_are_read_only():
    with pytest.raises(ValidationError):
        EntityKind.from_entity_set("Observations")
