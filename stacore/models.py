# -*- coding: utf-8 -*-
"""
    models.py: the relational schema backing the SensorThings entity sets

    Every entity has a numeric surrogate key (`id`) owned by the database and an
    external `identifier` (the "@iot.id" on the wire). When the client doesn't provide
    an identifier, the string form of the surrogate key is used (see `assign_identifier`).

    Observations reference a Dataset, a Dataset references the FeatureOfInterest:
    features are only reachable from observations through the dataset join.
"""
# pylint: disable=too-few-public-methods
from .sta_init import DB


thing_location = DB.Table(
    "thing_location",
    DB.Column("thing_id", DB.Integer, DB.ForeignKey("things.id"), primary_key=True),
    DB.Column("location_id", DB.Integer, DB.ForeignKey("locations.id"), primary_key=True),
)

location_historical_location = DB.Table(
    "location_historical_location",
    DB.Column("location_id", DB.Integer, DB.ForeignKey("locations.id"), primary_key=True),
    DB.Column("historical_location_id", DB.Integer, DB.ForeignKey("historical_locations.id"), primary_key=True),
)


class StaEntity:
    """
    Columns shared by all entities
    """

    id = DB.Column(DB.Integer, primary_key=True, autoincrement=True)
    identifier = DB.Column(DB.String(255), unique=True, nullable=True, index=True)

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.identifier}>"

    __str__ = __repr__


class Thing(StaEntity, DB.Model):
    __tablename__ = "things"

    name = DB.Column(DB.String(255))
    description = DB.Column(DB.Text)
    properties = DB.Column(DB.JSON)
    locations = DB.relationship("Location", secondary=thing_location, back_populates="things")
    historical_locations = DB.relationship("HistoricalLocation", back_populates="thing")


class Location(StaEntity, DB.Model):
    __tablename__ = "locations"

    name = DB.Column(DB.String(255))
    description = DB.Column(DB.Text)
    encoding_type = DB.Column(DB.String(100))
    geometry = DB.Column(DB.Text)  # WKT
    things = DB.relationship("Thing", secondary=thing_location, back_populates="locations")
    historical_locations = DB.relationship(
        "HistoricalLocation", secondary=location_historical_location, back_populates="locations"
    )


class HistoricalLocation(StaEntity, DB.Model):
    __tablename__ = "historical_locations"

    time = DB.Column(DB.DateTime)
    thing_id = DB.Column(DB.Integer, DB.ForeignKey("things.id"))
    thing = DB.relationship("Thing", back_populates="historical_locations")
    locations = DB.relationship("Location", secondary=location_historical_location, back_populates="historical_locations")


class FeatureOfInterest(StaEntity, DB.Model):
    __tablename__ = "features_of_interest"

    name = DB.Column(DB.String(255))
    description = DB.Column(DB.Text)
    encoding_type = DB.Column(DB.String(100))
    geometry = DB.Column(DB.Text)  # WKT
    datasets = DB.relationship("Dataset", back_populates="feature")


class Dataset(DB.Model):
    """
    Join entity between observations and their feature, not exposed as an entity set
    """

    __tablename__ = "datasets"

    id = DB.Column(DB.Integer, primary_key=True, autoincrement=True)
    feature_id = DB.Column(DB.Integer, DB.ForeignKey("features_of_interest.id"))
    feature = DB.relationship("FeatureOfInterest", back_populates="datasets")
    observations = DB.relationship("Observation", back_populates="dataset")


class Observation(StaEntity, DB.Model):
    __tablename__ = "observations"

    phenomenon_time = DB.Column(DB.DateTime)
    result = DB.Column(DB.Float)
    dataset_id = DB.Column(DB.Integer, DB.ForeignKey("datasets.id"))
    dataset = DB.relationship("Dataset", back_populates="observations")


def assign_identifier(instance: StaEntity) -> None:
    """
    Use the surrogate key as external identifier when none was supplied
    The instance must have been flushed
    """
    if instance.identifier is None and instance.id is not None:
        instance.identifier = str(instance.id)
