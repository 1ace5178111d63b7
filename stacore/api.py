"""
Flask binding

    app = Flask(__name__)
    DB.init_app(app)
    STA(app)
    STAAPI(app, prefix="/sta/v1.1")

GET     <prefix>/                       service document
GET     <prefix>/Things?$filter=...     collection
GET     <prefix>/Things(1)              entity
POST    <prefix>/Things(1)/Locations    create a Location linked to Things(1)
PATCH   <prefix>/Locations(2)           update the supplied fields
DELETE  <prefix>/Locations(2)
"""
from functools import wraps
from http import HTTPStatus
from typing import Callable, Optional

from flask import jsonify, make_response, request

import stacore
from .config import get_config
from .errors import GenericError, StaError, ValidationError
from .navigation import NavigationContext, NavigationResolver
from .registry import SchemaRegistry, default_registry
from .request import PathSegment, QueryOptions, StaRequest, format_key
from .resolvers import create_resolvers
from .services import EntityServiceRepository
from .wire import BackReference


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the HTTP methods
    - commit the database
    - convert all exceptions to a JSON error body: {"code": .., "message": ..}

    :param fun:
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args, **kwargs):
        try:
            result = fun(*args, **kwargs)
            stacore.DB.session.commit()
            return result
        except StaError as exc:
            error = exc
        except Exception as exc:
            stacore.log.exception(exc)
            error = GenericError(exc)

        stacore.DB.session.rollback()
        return make_response(jsonify(code=error.status_code, message=error.message), error.status_code)

    return method_wrapper


class STAAPI:
    """
    Expose the entity sets of the registry under `prefix`
    """

    def __init__(self, app=None, prefix: str = None, registry: SchemaRegistry = None) -> None:
        self.registry = registry or default_registry()
        self.services = EntityServiceRepository(self.registry)
        self.collection_resolver, self.entity_resolver = create_resolvers(self.registry, self.services)
        self.prefix = prefix
        if app is not None:
            self.init_app(app, prefix)

    def init_app(self, app, prefix: str = None) -> None:
        if prefix is None:
            prefix = app.config.get("URL_PREFIX", get_config("URL_PREFIX")) or ""
        self.prefix = prefix.rstrip("/")
        app.add_url_rule(f"{self.prefix}/", "sta_service_document", self.service_document, methods=["GET"])
        app.add_url_rule(
            f"{self.prefix}/<path:path>", "sta_resource", self.dispatch, methods=["GET", "POST", "PATCH", "DELETE"]
        )
        stacore.log.info(f"Exposing {', '.join(entity_set.name for entity_set in self.registry)} on {self.prefix}/")

    @property
    def base_uri(self) -> str:
        return request.url_root.rstrip("/") + self.prefix

    @http_method_decorator
    def service_document(self):
        value = [{"name": entity_set.name, "url": f"{self.base_uri}/{entity_set.name}"} for entity_set in self.registry]
        return jsonify(value=value)

    @http_method_decorator
    def dispatch(self, path: str):
        sta_request = StaRequest.from_path(path, request.args.to_dict(), self.base_uri)
        if request.method == "GET":
            return self.get(sta_request)
        if request.method == "POST":
            return self.post(sta_request)
        if request.method == "PATCH":
            return self.patch(sta_request)
        return self.delete(sta_request)

    def get(self, sta_request: StaRequest):
        context = self.navigation.resolve_chain(sta_request.path_segments)
        if context.is_entity:
            return jsonify(self.entity_resolver.resolve(sta_request, context).value)
        return jsonify(self.collection_resolver.resolve(sta_request, context).to_dict())

    def post(self, sta_request: StaRequest):
        context = self.navigation.resolve_chain(sta_request.path_segments)
        if context.is_entity:
            raise ValidationError("POST requires a collection path")
        service = self.services.get_entity_service(context.target_set.name)
        entity = service.create(self._payload(), self._back_reference(context))
        response = make_response(self._entity_json(context.target_set.name, entity.identifier), HTTPStatus.CREATED)
        response.headers["Location"] = f"{self.base_uri}/{context.target_set.name}({format_key(entity.identifier)})"
        return response

    def patch(self, sta_request: StaRequest):
        context = self.navigation.resolve_chain(sta_request.path_segments)
        entity_set, entity = self.entity_resolver.fetch(context, sta_request.path_segments)
        service = self.services.get_entity_service(entity_set.name)
        service.update(entity.identifier, self._payload(), self._back_reference(context))
        return self._entity_json(entity_set.name, entity.identifier)

    def delete(self, sta_request: StaRequest):
        entity_set, entity = self.entity_resolver.fetch_entity(sta_request.path_segments)
        self.services.get_entity_service(entity_set.name).delete(entity.identifier)
        return make_response("", HTTPStatus.OK)

    @property
    def navigation(self) -> NavigationResolver:
        return self.entity_resolver.navigation

    def _back_reference(self, context: NavigationContext) -> Optional[BackReference]:
        """
        :return: the link to the parent entity implied by a navigation path, eg. Things(1)/Locations
        """
        if context.source_set is None:
            return None
        nav = self.registry.resolve_navigation(context.source_set, context.target_property)
        return BackReference(nav.inverse, context.source_id)

    def _entity_json(self, entity_set_name: str, identifier: str):
        segment = PathSegment(entity_set_name, identifier, format_key(identifier))
        sta_request = StaRequest((segment,), QueryOptions(base_uri=self.base_uri))
        return jsonify(self.entity_resolver.resolve(sta_request).value)

    @staticmethod
    def _payload():
        payload = request.get_json(force=True, silent=True)
        if payload is None:
            raise ValidationError("Invalid JSON payload")
        return payload
