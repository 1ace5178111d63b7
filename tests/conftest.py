import datetime

import pytest
from flask import Flask

from stacore import DB, STA, STAAPI
from stacore.models import (
    Dataset,
    FeatureOfInterest,
    HistoricalLocation,
    Location,
    Observation,
    Thing,
    assign_identifier,
)

GEOJSON = "application/vnd.geo+json"


def seed(session) -> None:
    """
    Things 1, 2 and 3; Thing 1 is at Locations 1 and 2, Thing 2 at Location 2
    HistoricalLocations: 1 (Thing 1 at Location 1), 2 (Thing 1 at Location 2), 3 (Thing 2 at Location 2)
    Observations 1 and 2 belong to FeatureOfInterest 1, Observation 3 to FeatureOfInterest 2
    """
    t1 = Thing(name="Weather Station", description="roof", properties={"owner": "lab"})
    t2 = Thing(name="Rain Gauge", description="garden")
    t3 = Thing(name="Spare", description="shelf")
    l1 = Location(name="Roof", description="lab roof", encoding_type=GEOJSON, geometry="POINT (7.1 52)")
    l2 = Location(name="Garden", description="lab garden", encoding_type=GEOJSON, geometry="POINT (7.2 52.1)")
    t1.locations = [l1, l2]
    t2.locations = [l2]
    h1 = HistoricalLocation(time=datetime.datetime(2019, 1, 1), thing=t1, locations=[l1])
    h2 = HistoricalLocation(time=datetime.datetime(2020, 1, 1), thing=t1, locations=[l2])
    h3 = HistoricalLocation(time=datetime.datetime(2020, 6, 1), thing=t2, locations=[l2])
    f1 = FeatureOfInterest(name="Field", description="wheat", encoding_type=GEOJSON, geometry="POINT (7 51)")
    f2 = FeatureOfInterest(name="Lake", description="water", encoding_type=GEOJSON, geometry="POINT (8 52)")
    f3 = FeatureOfInterest(name="Empty", description="no data", encoding_type=GEOJSON, geometry="POINT (9 53)")
    d1 = Dataset(feature=f1)
    d2 = Dataset(feature=f2)
    observations = [
        Observation(phenomenon_time=datetime.datetime(2021, 1, 1), result=10.0, dataset=d1),
        Observation(phenomenon_time=datetime.datetime(2021, 1, 2), result=25.0, dataset=d1),
        Observation(phenomenon_time=datetime.datetime(2021, 1, 3), result=30.0, dataset=d2),
    ]
    instances = [t1, t2, t3, l1, l2, h1, h2, h3, f1, f2, f3] + observations
    session.add_all(instances + [d1, d2])
    session.flush()
    for instance in instances:
        assign_identifier(instance)
    session.commit()


@pytest.fixture
def app():
    app = Flask("stacore_test")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", TESTING=True)
    DB.init_app(app)
    STA(app)
    STAAPI(app, prefix="/sta")
    with app.app_context():
        DB.create_all()
        seed(DB.session)
        yield app
        DB.session.remove()
        DB.drop_all()


@pytest.fixture
def session(app):
    return DB.session


@pytest.fixture
def client(app):
    return app.test_client()
