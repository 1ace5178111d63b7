"""
SQLAlchemy backed entity services

One `EntityService` per entity set executes the fetches requested by the resolvers.
Relationship scoped fetches (eg. Things(1)/Locations) don't join on the ORM relationships:
they reuse the predicate builder, ie. the target's inverse relationship filter applied
to the id subquery of the source entity.

Writes convert the payload with the wire model and persist the resulting graph in one
write transaction.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement

import stacore
from .errors import InvalidNavigationError, NotFoundError, ValidationError
from .models import StaEntity, assign_identifier
from .predicates import QuerySpecifications, get_query_specifications
from .registry import EntitySet, SchemaRegistry, default_registry
from .tx import write_transaction
from .wire import KIND_SPECS, BackReference, EntityKind, Mode, convert, supplied_attributes

OrderBy = Iterable[Tuple[str, bool]]


class EntityService:
    """
    Fetch, count and write the entities of one entity set
    """

    def __init__(self, entity_set: EntitySet, specifications: QuerySpecifications, repository: "EntityServiceRepository") -> None:
        self.entity_set = entity_set
        self.specifications = specifications
        self.repository = repository

    def __repr__(self):
        return f"<EntityService {self.entity_set.name}>"

    @property
    def session(self):
        return stacore.DB.session

    @property
    def model(self):
        return self.entity_set.model

    def _query(self, filter: ColumnElement = None, order_by: OrderBy = ()):
        query = self.session.query(self.model)
        if filter is not None:
            query = query.filter(filter)
        ordering = [self.specifications.order_by(prop, desc) for prop, desc in order_by]
        # the surrogate key makes the order (and hence the pages) deterministic
        ordering.append(self.specifications.key.asc())
        return query.order_by(*ordering)

    def fetch_collection(self, filter: ColumnElement = None, order_by: OrderBy = (), skip: int = 0, top: int = None) -> List[Any]:
        """
        :param filter: sqla predicate
        :param order_by: (property, descending) pairs
        :param skip: offset
        :param top: limit, None for no limit
        :return: list of entities
        """
        query = self._query(filter, order_by).offset(skip)
        if top is not None:
            query = query.limit(top)
        return query.all()

    def count(self, filter: ColumnElement = None) -> int:
        query = self.session.query(self.specifications.key)
        if filter is not None:
            query = query.filter(filter)
        return query.count()

    def find(self, identifier: str) -> Optional[Any]:
        return self._query(self.specifications.with_identifier(identifier)).first()

    def fetch_one(self, identifier: str) -> Any:
        """
        :param identifier: external identifier ("@iot.id")
        :return: the entity
        :raise NotFoundError: no such entity
        """
        result = self.find(identifier)
        if result is None:
            raise NotFoundError(f"No {self.entity_set.name} with @iot.id {identifier}")
        return result

    def exists(self, identifier: str) -> bool:
        return self.count(self.specifications.with_identifier(identifier)) > 0

    def related_filter(self, source_id: str, source_set: EntitySet, property_name: str) -> ColumnElement:
        """
        :param source_id: identifier of the source entity
        :param source_set: entity set of the source entity
        :param property_name: navigation property of `source_set` pointing to this entity set
        :return: predicate selecting the entities related to the source
        """
        nav = self.repository.registry.resolve_navigation(source_set, property_name)
        if nav.target != self.entity_set.name:
            raise InvalidNavigationError(f"{source_set.name}/{property_name} doesn't lead to {self.entity_set.name}")
        source_specifications = get_query_specifications(source_set.name)
        return self.specifications.is_related_to(nav.inverse, source_specifications, source_id)

    def _scoped(self, source_id, source_set, property_name, filter):
        scope = self.related_filter(source_id, source_set, property_name)
        return scope if filter is None else scope & filter

    def fetch_related(
        self,
        source_id: str,
        source_set: EntitySet,
        property_name: str,
        filter: ColumnElement = None,
        order_by: OrderBy = (),
        skip: int = 0,
        top: int = None,
    ) -> List[Any]:
        return self.fetch_collection(self._scoped(source_id, source_set, property_name, filter), order_by, skip, top)

    def count_related(self, source_id: str, source_set: EntitySet, property_name: str, filter: ColumnElement = None) -> int:
        return self.count(self._scoped(source_id, source_set, property_name, filter))

    def fetch_related_one(self, source_id: str, source_set: EntitySet, property_name: str, identifier: str = None) -> Any:
        """
        Fetch one related entity: Things(1)/Locations(2) or HistoricalLocations(1)/Thing

        :raise InvalidNavigationError: no identifier for a collection valued property
        :raise NotFoundError: the entity doesn't exist or isn't related to the source
        """
        nav = self.repository.registry.resolve_navigation(source_set, property_name)
        if identifier is None and nav.many:
            raise InvalidNavigationError(f"{source_set.name}/{property_name} requires an id")
        filter = None if identifier is None else self.specifications.with_identifier(identifier)
        result = self._query(self._scoped(source_id, source_set, property_name, filter)).first()
        if result is None:
            raise NotFoundError(f"No {property_name} related to {source_set.name} {source_id}")
        return result

    def exists_related(self, source_id: str, source_set: EntitySet, property_name: str, identifier: str = None) -> bool:
        filter = None if identifier is None else self.specifications.with_identifier(identifier)
        return self.count_related(source_id, source_set, property_name, filter) > 0

    #
    # Write path
    #
    @property
    def kind(self) -> EntityKind:
        return EntityKind.from_entity_set(self.entity_set.name)

    def resolve_reference(self, kind: EntityKind, identifier: str) -> Any:
        """
        :return: the stored entity a REFERENCE object links to
        :raise ValidationError: the referenced entity doesn't exist
        """
        service = self.repository.get_entity_service(kind.value)
        result = service.find(identifier)
        if result is None:
            raise ValidationError(f"Referenced {kind.value} entity with @iot.id {identifier} doesn't exist")
        return result

    def create(self, payload: Any, back_reference: Optional[BackReference] = None) -> Any:
        """
        Create the entity graph described by `payload` (FULL mode)

        :param payload: decoded JSON object
        :param back_reference: link to the parent when created through a navigation path
        :return: the created entity
        """
        with write_transaction(self.session) as session:
            with session.no_autoflush:
                entity = convert(self.kind, payload, Mode.FULL, back_reference, self.resolve_reference)
            self._flush(session, entity)
        stacore.log.info(f"Created {self.entity_set.name} {entity.identifier}")
        return entity

    def update(self, identifier: str, payload: Any, back_reference: Optional[BackReference] = None) -> Any:
        """
        Apply the fields supplied in `payload` to the entity (PATCH mode)

        :param back_reference: link to the parent when patched through a navigation path
        :return: the updated entity
        """
        relation = None if back_reference is None else KIND_SPECS[self.kind].relations.get(back_reference.relation)
        merged = () if relation is None else (relation.attribute,)
        with write_transaction(self.session) as session:
            target = self.fetch_one(identifier)
            with session.no_autoflush:
                patch = convert(self.kind, payload, Mode.PATCH, back_reference, self.resolve_reference)
                if patch.identifier is not None and patch.identifier != target.identifier:
                    raise ValidationError(f"@iot.id can't be changed ({target.identifier} -> {patch.identifier})")
                self._apply_patch(target, patch, merged)
            self._flush(session, target)
        stacore.log.info(f"Updated {self.entity_set.name} {identifier}")
        return target

    def delete(self, identifier: str) -> None:
        with write_transaction(self.session) as session:
            session.delete(self.fetch_one(identifier))
        stacore.log.info(f"Deleted {self.entity_set.name} {identifier}")

    def _apply_patch(self, target: Any, patch: Any, merged: Iterable[str] = ()) -> None:
        relationships = self.model.__mapper__.relationships
        for attr_name in supplied_attributes(patch) - {"identifier"}:
            value = getattr(patch, attr_name)
            if attr_name in relationships:
                # detach the related rows from the transient patch object first
                if relationships[attr_name].uselist:
                    value = list(value)
                    setattr(patch, attr_name, [])
                    if attr_name in merged:
                        # the link implied by the request path is added to the existing ones
                        current = list(getattr(target, attr_name))
                        value = current + [item for item in value if item not in current]
                else:
                    setattr(patch, attr_name, None)
            setattr(target, attr_name, value)

    def _flush(self, session, entity: Any) -> None:
        session.add(entity)
        pending = [instance for instance in session.new if isinstance(instance, StaEntity)]
        for instance in pending:
            # numeric identifiers are generated from the surrogate key
            if instance.identifier is not None and instance.identifier.isdigit():
                raise ValidationError(f"@iot.id {instance.identifier} is reserved, numeric ids are assigned by the service")
        self._flush_session(session)
        for instance in pending:
            assign_identifier(instance)
        self._flush_session(session)

    def _flush_session(self, session) -> None:
        try:
            session.flush()
        except IntegrityError as exc:
            raise ValidationError(f"Can't store {self.entity_set.name}: {exc.orig}")


class EntityServiceRepository:
    """
    Lookup of the entity service of an entity set
    """

    def __init__(self, registry: SchemaRegistry = None) -> None:
        self.registry = registry or default_registry()
        self._services: Dict[str, EntityService] = {}

    def get_entity_service(self, entity_set_name: str) -> EntityService:
        service = self._services.get(entity_set_name)
        if service is None:
            entity_set = self.registry.get_entity_set(entity_set_name)
            service = EntityService(entity_set, get_query_specifications(entity_set_name), self)
            self._services[entity_set_name] = service
        return service
