import pytest
from sqlalchemy import select

from stacore.errors import UnknownPropertyError, ValidationError
from stacore.models import FeatureOfInterest, Location, Observation, Thing
from stacore.predicates import build_predicate, compare, get_query_specifications

GEOJSON = "application/vnd.geo+json"


def matching(session, model, predicate):
    return sorted(entity.identifier for entity in session.query(model).filter(predicate).order_by(model.id))


def test_string_property(session):
    predicate = build_predicate("Things", "name", "eq", "Rain Gauge")
    assert matching(session, Thing, predicate) == ["2"]


def test_switched_operands(session):
    assert matching(session, Thing, build_predicate("Things", "name", "lt", "S")) == ["2"]
    # 'S' lt name
    assert matching(session, Thing, build_predicate("Things", "name", "lt", "S", switched=True)) == ["1", "3"]


def test_null_comparison(session):
    assert matching(session, Thing, build_predicate("Things", "description", "ne", None)) == ["1", "2", "3"]
    with pytest.raises(ValidationError):
        build_predicate("Things", "description", "gt", None)


def test_id_property(session):
    assert matching(session, Thing, build_predicate("Things", "id", "eq", "3")) == ["3"]
    assert matching(session, Thing, build_predicate("Things", "id", "ge", 2)) == ["2", "3"]


def test_id_equality_uses_external_identifier(session):
    # stored with surrogate key 4
    session.add(Thing(identifier="100", name="Buoy", description="floating"))
    session.flush()
    assert matching(session, Thing, build_predicate("Things", "id", "eq", 100)) == ["100"]
    assert matching(session, Thing, build_predicate("Things", "id", "eq", 4)) == []
    assert matching(session, Thing, build_predicate("Things", "id", "ne", "1")) == ["100", "2", "3"]


@pytest.mark.parametrize("value", ["abc", "1.5", True])
def test_id_must_be_numeric(value):
    with pytest.raises(ValidationError):
        build_predicate("Things", "id", "eq", value)


def test_unknown_property():
    with pytest.raises(UnknownPropertyError):
        build_predicate("Things", "color", "eq", "red")


def test_unknown_operator():
    with pytest.raises(ValidationError):
        build_predicate("Things", "name", "like", "x")


def test_number_and_datetime_properties(session):
    assert matching(session, Observation, build_predicate("Observations", "result", "gt", 20)) == ["2", "3"]
    predicate = build_predicate("Observations", "phenomenonTime", "le", "2021-01-02T00:00:00Z")
    assert matching(session, Observation, predicate) == ["1", "2"]
    with pytest.raises(ValidationError):
        build_predicate("Observations", "result", "gt", "many")


def test_relationship_filter_through_dataset(session):
    observations = get_query_specifications("Observations")
    # three observations match, two of them belong to the same feature
    keys = observations.get_id_subquery(Observation.result >= 10)
    predicate = build_predicate("FeaturesOfInterest", "Observations", "eq", keys)
    assert matching(session, FeatureOfInterest, predicate) == ["1", "2"]

    keys = observations.get_id_subquery(Observation.result > 26)
    assert matching(session, FeatureOfInterest, build_predicate("FeaturesOfInterest", "Observations", "eq", keys)) == ["2"]


def test_relationship_filter_without_matches(session):
    keys = get_query_specifications("Observations").get_id_subquery(Observation.result > 100)
    predicate = build_predicate("FeaturesOfInterest", "Observations", "eq", keys)
    assert matching(session, FeatureOfInterest, predicate) == []


def test_observation_filtered_by_feature(session):
    keys = get_query_specifications("FeaturesOfInterest").get_id_subquery(FeatureOfInterest.name == "Field")
    predicate = build_predicate("Observations", "FeatureOfInterest", "eq", keys)
    assert matching(session, Observation, predicate) == ["1", "2"]


def test_many_to_many_relationship_filter(session):
    keys = get_query_specifications("Locations").get_id_subquery(Location.name == "Garden")
    assert matching(session, Thing, build_predicate("Things", "Locations", "eq", keys)) == ["1", "2"]


def test_relationship_filter_requires_subquery():
    with pytest.raises(ValidationError):
        build_predicate("FeaturesOfInterest", "Observations", "eq", 1)
    keys = get_query_specifications("Observations").get_id_subquery()
    with pytest.raises(ValidationError):
        build_predicate("FeaturesOfInterest", "Observations", "ne", keys)


@pytest.mark.parametrize("value", [GEOJSON, "application/vnd.geo json"])
@pytest.mark.parametrize("property_name", ["encodingType", "featureType"])
def test_enumerated_property_supported_value(session, property_name, value):
    predicate = build_predicate("FeaturesOfInterest", property_name, "eq", value)
    assert matching(session, FeatureOfInterest, predicate) == ["1", "2", "3"]


@pytest.mark.parametrize("operator_name, value", [("eq", "text/plain"), ("eq", None), ("ne", GEOJSON)])
def test_enumerated_property_other_value_matches_nothing(session, operator_name, value):
    predicate = build_predicate("FeaturesOfInterest", "encodingType", operator_name, value)
    assert matching(session, FeatureOfInterest, predicate) == []
    assert matching(session, Location, build_predicate("Locations", "encodingType", operator_name, value)) == []


def test_id_subquery_without_filter(session):
    keys = get_query_specifications("Things").get_id_subquery()
    assert sorted(session.execute(keys).scalars()) == [1, 2, 3]


def test_is_related_to(session):
    things = get_query_specifications("Things")
    locations = get_query_specifications("Locations")
    assert matching(session, Location, locations.is_related_to("Things", things, "2")) == ["2"]
    assert matching(session, Thing, things.is_related_to("Locations", locations, "1")) == ["1"]


def test_compare_renders_literal_first_when_switched():
    assert "things.name > " in str(select(Thing.id).where(compare(Thing.name, "gt", "x")))
    assert "> things.name" in str(select(Thing.id).where(compare(Thing.name, "gt", "x", switched=True)))


def test_order_by_unknown_property():
    with pytest.raises(UnknownPropertyError):
        get_query_specifications("Things").order_by("properties")
