import logging
import os
import sys
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
import stacore
import flask.app


class STA:
    """This class configures the Flask application to serve the SensorThings entity sets
    :param app: a Flask application.
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    """

    # Configuration settings are stored as class variables
    DEFAULT_TOP = 100  # $top used when the client doesn't specify one
    MAX_TOP = 10000
    MAX_SKIP = 2**31
    MAX_EXPAND_DEPTH = 5  # the relation graph is cyclic (Thing -> Location -> HistoricalLocation -> Thing)
    ENCODINGTYPE_GEOJSON = "application/vnd.geo+json"
    GEOMETRY_SRID = 4326
    LOGLEVEL = logging.WARNING
    URL_PREFIX = ""

    def __init__(self, app: flask.app.Flask = None, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(self, app: flask.app.Flask, app_db: SQLAlchemy = None, **kwargs) -> None:
        """
        Bind the database and copy the configuration overrides
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions.get("sqlalchemy", stacore.DB)

        stacore.DB = self.db = app_db

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(STA, conf_name, conf_val)

        for conf_name, conf_val in app.config.items():
            if hasattr(STA, conf_name):
                setattr(STA, conf_name, conf_val)

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_appcontext
        def shutdown_session(exception=None):
            """cfr. http://flask.pocoo.org/docs/0.12/patterns/sqlalchemy/"""
            self.db.session.remove()

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# DB and logging initialization
#
DB = SQLAlchemy()

try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = STA.init_logging(LOGLEVEL)
