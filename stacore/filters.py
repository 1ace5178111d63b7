"""
$filter expression parsing

    name eq 'Weather Station'
    'Weather Station' eq name                 (literal on the left: switched comparison)
    Observations/id eq 5 and not (description eq null)
    Locations/HistoricalLocations/time gt 2019-01-01T00:00:00Z

Comparisons on a path (Rel/.../property) are built from the innermost entity set outwards:
the predicate on the last entity set is turned into a surrogate key subquery, which becomes
the value of the enclosing relationship filter.
"""
import re
from typing import Any, List, Tuple

from sqlalchemy import and_, not_, or_
from sqlalchemy.sql.elements import ColumnElement

import stacore
from .errors import UnknownPropertyError, ValidationError
from .predicates import OPERATORS, get_query_specifications
from .registry import EntitySet, SchemaRegistry, default_registry

TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<string>'(?:[^']|'')*')
    |(?P<datetime>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:\d{2})?)
    |(?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    |(?P<name>@?[A-Za-z_][\w.@]*(?:/[A-Za-z_@][\w.@]*)*)
    """,
    re.VERBOSE,
)

KEYWORD_LITERALS = {"true": True, "false": False, "null": None}
LOGICAL = ("and", "or", "not")

# token kinds
LITERAL = "literal"
PATH = "path"


def tokenize(expression: str) -> List[Tuple[str, Any]]:
    """
    :return: list of (kind, value) tuples
    """
    tokens = []
    pos = 0
    while pos < len(expression):
        match = TOKEN_RE.match(expression, pos)
        if not match:
            raise ValidationError(f'Invalid $filter near "{expression[pos:pos + 20]}"')
        pos = match.end()
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "ws":
            continue
        if kind == "string":
            tokens.append((LITERAL, text[1:-1].replace("''", "'")))
        elif kind == "datetime":
            tokens.append((LITERAL, text))
        elif kind == "number":
            tokens.append((LITERAL, float(text) if any(c in text for c in ".eE") else int(text)))
        elif kind == "name":
            lowered = text.lower()
            if lowered in KEYWORD_LITERALS:
                tokens.append((LITERAL, KEYWORD_LITERALS[lowered]))
            elif lowered in OPERATORS or lowered in LOGICAL:
                tokens.append((lowered, lowered))
            else:
                tokens.append((PATH, text))
        else:
            tokens.append((kind, text))
    return tokens


class FilterParser:
    """
    Recursive descent parser producing a sqla predicate for one entity set

        or_expr    := and_expr ("or" and_expr)*
        and_expr   := not_expr ("and" not_expr)*
        not_expr   := "not" not_expr | primary
        primary    := "(" or_expr ")" | comparison
        comparison := operand OPERATOR operand
    """

    def __init__(self, registry: SchemaRegistry = None) -> None:
        self.registry = registry or default_registry()

    def parse(self, expression: str, entity_set: EntitySet) -> ColumnElement:
        self._tokens = tokenize(expression)
        self._pos = 0
        self._entity_set = entity_set
        if not self._tokens:
            raise ValidationError("Empty $filter")
        result = self._or_expr()
        if self._pos != len(self._tokens):
            raise ValidationError(f'Unexpected "{self._tokens[self._pos][1]}" in $filter')
        stacore.log.debug(f"$filter on {entity_set.name}: {expression}")
        return result

    def _peek(self):
        if self._pos < len(self._tokens):
            return self._tokens[self._pos][0]
        return None

    def _next(self):
        if self._pos >= len(self._tokens):
            raise ValidationError("Unexpected end of $filter")
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _or_expr(self):
        clauses = [self._and_expr()]
        while self._peek() == "or":
            self._next()
            clauses.append(self._and_expr())
        return clauses[0] if len(clauses) == 1 else or_(*clauses)

    def _and_expr(self):
        clauses = [self._not_expr()]
        while self._peek() == "and":
            self._next()
            clauses.append(self._not_expr())
        return clauses[0] if len(clauses) == 1 else and_(*clauses)

    def _not_expr(self):
        if self._peek() == "not":
            self._next()
            return not_(self._not_expr())
        return self._primary()

    def _primary(self):
        if self._peek() == "lparen":
            self._next()
            result = self._or_expr()
            if self._next()[0] != "rparen":
                raise ValidationError("Missing ) in $filter")
            return result
        return self._comparison()

    def _comparison(self):
        left = self._next()
        operator = self._next()
        right = self._next()
        if operator[0] not in OPERATORS:
            raise ValidationError(f'Expected a comparison operator instead of "{operator[1]}"')
        if left[0] == PATH and right[0] == LITERAL:
            return self.path_predicate(self._entity_set, left[1].split("/"), operator[0], right[1], False)
        if left[0] == LITERAL and right[0] == PATH:
            return self.path_predicate(self._entity_set, right[1].split("/"), operator[0], left[1], True)
        raise ValidationError("A comparison needs one property and one literal")

    def path_predicate(self, entity_set: EntitySet, segments: List[str], operator: str, value: Any, switched: bool):
        """
        :param segments: property path, eg. ["Observations", "id"]
        """
        specifications = get_query_specifications(entity_set.name)
        property_name = "id" if segments[0] == "@iot.id" else segments[0]
        if len(segments) == 1:
            return specifications.build_predicate(property_name, operator, value, switched)

        nav = entity_set.get_navigation(property_name)
        if nav is None:
            raise UnknownPropertyError(f'No relationship "{property_name}" in {entity_set.name}')
        target = self.registry.get_entity_set(nav.target)
        inner = self.path_predicate(target, segments[1:], operator, value, switched)
        id_subquery = get_query_specifications(target.name).get_id_subquery(inner)
        return specifications.build_predicate(property_name, "eq", id_subquery)


def parse_filter(expression: str, entity_set: EntitySet, registry: SchemaRegistry = None) -> ColumnElement:
    """
    :param expression: $filter value
    :param entity_set: entity set the expression applies to
    :return: sqla predicate
    """
    return FilterParser(registry).parse(expression, entity_set)
