import pytest

from stacore import STA
from stacore.errors import ValidationError
from stacore.request import PathSegment, QueryOptions, StaRequest, format_key, parse_path, split_top_level


def test_parse_path():
    assert parse_path("Things") == [PathSegment("Things")]
    assert parse_path("/Things(1)/Locations/") == [PathSegment("Things", "1", "1"), PathSegment("Locations")]
    assert parse_path("Things('a b')") == [PathSegment("Things", "a b", "'a b'")]
    assert parse_path("Things('it''s')")[0].key == "it's"
    assert parse_path("") == []


@pytest.mark.parametrize("path", ["Things(1", "Things(1)Locations", "Things//Locations", "Things()"])
def test_parse_invalid_path(path):
    with pytest.raises(ValidationError):
        parse_path(path)


def test_path_segment_str():
    assert str(PathSegment("Things", "1", "1")) == "Things(1)"
    assert str(PathSegment("Locations")) == "Locations"


def test_format_key():
    assert format_key(12) == "12"
    assert format_key("12") == "12"
    assert format_key("a b") == "'a b'"
    assert format_key("it's") == "'it''s'"


def test_split_top_level():
    assert split_top_level("a,b(c,d),'e,f'", ",") == ["a", "b(c,d)", "'e,f'"]
    with pytest.raises(ValidationError):
        split_top_level("a(b", ",")


def test_defaults():
    options = QueryOptions.from_args({})
    assert options.top == STA.DEFAULT_TOP
    assert options.skip == 0
    assert options.count is False
    assert options.filter is None
    assert not options.has_expand


def test_top_is_capped():
    assert QueryOptions.from_args({"$top": str(STA.MAX_TOP + 1)}).top == STA.MAX_TOP


@pytest.mark.parametrize("args", [{"$top": "-1"}, {"$skip": "x"}, {"$count": "yes"}, {"$format": "json"}, {"$orderby": "name up"}])
def test_invalid_options(args):
    with pytest.raises(ValidationError):
        QueryOptions.from_args(args)


def test_options():
    args = {"$filter": "name eq 'x'", "$orderby": "name desc,id", "$select": "name,description", "$skip": "5", "$top": "10", "$count": "true"}
    options = QueryOptions.from_args(args, "http://localhost/sta")
    assert options.filter == "name eq 'x'"
    assert options.orderby == (("name", True), ("id", False))
    assert options.select == ("name", "description")
    assert (options.skip, options.top, options.count) == (5, 10, True)
    assert options.base_uri == "http://localhost/sta"
    assert set(options.raw) == {"$filter", "$orderby", "$select", "$count"}


def test_nested_expand():
    options = QueryOptions.from_args({"$expand": "Locations($select=name;$top=2;$expand=HistoricalLocations),HistoricalLocations"})
    locations, historical_locations = options.expand
    assert locations.relation == "Locations"
    assert locations.options.select == ("name",)
    assert locations.options.top == 2
    assert locations.options.expand[0].relation == "HistoricalLocations"
    assert historical_locations.relation == "HistoricalLocations"
    assert historical_locations.options.top == STA.DEFAULT_TOP


def test_expand_path_shorthand_is_merged():
    options = QueryOptions.from_args({"$expand": "Locations,Locations/Things"})
    assert len(options.expand) == 1
    assert [item.relation for item in options.expand[0].options.expand] == ["Things"]


def test_invalid_expand():
    with pytest.raises(ValidationError):
        QueryOptions.from_args({"$expand": "Locations($top)"})


def test_sta_request():
    request = StaRequest.from_path("Things(1)/Locations", {"$top": "3"})
    assert request.path_segments == (PathSegment("Things", "1", "1"), PathSegment("Locations"))
    assert request.options.top == 3
