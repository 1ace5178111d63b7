__version__ = "0.3.0"
__description__ = "stacore : SensorThings API query translation and request resolution on SQLAlchemy"
