# flake8: noqa: F401
#
# sta_init has to be imported first: the other modules use stacore.DB and stacore.log
#
from .sta_init import DB, log, STA
from .errors import (
    StaError,
    ValidationError,
    DuplicateReferenceError,
    UnknownPropertyError,
    InvalidNavigationError,
    NotFoundError,
    GenericError,
)
from .registry import SchemaRegistry, EntitySet, NavigationProperty, default_registry
from .predicates import QuerySpecifications, build_predicate, get_query_specifications
from .filters import FilterParser, parse_filter
from .request import PathSegment, QueryOptions, ExpandItem, StaRequest
from .navigation import NavigationContext, NavigationResolver
from .pagination import next_link
from .services import EntityService, EntityServiceRepository
from .annotate import EntityAnnotator
from .resolvers import (
    CollectionResponse,
    EntityResponse,
    EntityCollectionRequestResolver,
    EntityRequestResolver,
    QueryOptionsHandler,
    create_resolvers,
)
from .wire import BackReference, EntityKind, Mode, WireEntity, parse_wire, to_entity, validate
from .tx import write_transaction
from .api import STAAPI
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "STA",
    "STAAPI",
    "DB",
    "log",
    # query translation:
    "QuerySpecifications",
    "build_predicate",
    "get_query_specifications",
    "FilterParser",
    "parse_filter",
    # request resolution:
    "SchemaRegistry",
    "EntitySet",
    "NavigationProperty",
    "default_registry",
    "PathSegment",
    "QueryOptions",
    "ExpandItem",
    "StaRequest",
    "NavigationContext",
    "NavigationResolver",
    "next_link",
    "EntityService",
    "EntityServiceRepository",
    "EntityAnnotator",
    "CollectionResponse",
    "EntityResponse",
    "EntityCollectionRequestResolver",
    "EntityRequestResolver",
    "QueryOptionsHandler",
    "create_resolvers",
    # wire model:
    "BackReference",
    "EntityKind",
    "Mode",
    "WireEntity",
    "parse_wire",
    "to_entity",
    "validate",
    "write_transaction",
    # Errors:
    "StaError",
    "ValidationError",
    "DuplicateReferenceError",
    "UnknownPropertyError",
    "InvalidNavigationError",
    "NotFoundError",
    "GenericError",
)
