"""
Parse the SensorThings request: resource path and query options

Resource path:
    Things(1)/Locations
    HistoricalLocations('a b')/Thing

Query options:
- $filter, $orderby, $select
- $expand, optionally with nested options: $expand=Locations($select=name;$top=2),HistoricalLocations
- $skip, $top, $count

$top defaults to DEFAULT_TOP, this happens once here so that the fetch and the
next-link are computed with the same value.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Tuple

from .config import get_int_config
from .errors import ValidationError
from .sta_init import STA

SEGMENT_RE = re.compile(r"(\w+)(?:\(('(?:[^']|'')*'|[^)']*)\))?")
RELATION_RE = re.compile(r"^(\w+)")
ORDERBY_RE = re.compile(r"^(\w+)(?:\s+(asc|desc))?$")
PASSTHROUGH_OPTIONS = ("$filter", "$orderby", "$select", "$expand", "$count")


@dataclass(frozen=True)
class PathSegment:
    """
    name: entity set or navigation property name
    key: the identifier addressed by the segment (unquoted), or None
    raw_key: the key literal as it appeared in the url
    """

    name: str
    key: Optional[str] = None
    raw_key: Optional[str] = None

    def __str__(self):
        if self.raw_key is None:
            return self.name
        return f"{self.name}({self.raw_key})"


def parse_key(raw_key: str) -> str:
    """
    :param raw_key: key literal, eg. 1 or 'abc' (quotes doubled inside)
    :return: identifier string
    """
    raw_key = raw_key.strip()
    if len(raw_key) >= 2 and raw_key.startswith("'") and raw_key.endswith("'"):
        return raw_key[1:-1].replace("''", "'")
    if not raw_key:
        raise ValidationError("Empty key in resource path")
    return raw_key


def format_key(identifier) -> str:
    """
    :return: key literal for `identifier`: digits are rendered bare, anything else quoted
    """
    identifier = str(identifier)
    if identifier.isdigit():
        return identifier
    escaped = identifier.replace("'", "''")
    return f"'{escaped}'"


def parse_path(path: str) -> List[PathSegment]:
    """
    :param path: resource path relative to the service root, eg. "Things(1)/Locations"
    :return: list of PathSegment
    """
    path = path.strip("/")
    if not path:
        return []
    result = []
    pos = 0
    while pos < len(path):
        match = SEGMENT_RE.match(path, pos)
        if not match:
            raise ValidationError(f'Invalid resource path "{path}"')
        name, raw_key = match.group(1), match.group(2)
        key = parse_key(raw_key) if raw_key is not None else None
        result.append(PathSegment(name, key, raw_key.strip() if raw_key is not None else None))
        pos = match.end()
        if pos < len(path):
            if path[pos] != "/":
                raise ValidationError(f'Invalid resource path "{path}"')
            pos += 1
    return result


def split_top_level(text: str, separator: str) -> List[str]:
    """
    Split `text` on `separator`, ignoring separators inside parentheses and quoted strings
    """
    parts = []
    depth = 0
    quoted = False
    current = []
    for char in text:
        if char == "'":
            quoted = not quoted
        elif not quoted and char == "(":
            depth += 1
        elif not quoted and char == ")":
            depth -= 1
            if depth < 0:
                raise ValidationError(f'Unbalanced parentheses in "{text}"')
        if char == separator and depth == 0 and not quoted:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0 or quoted:
        raise ValidationError(f'Unbalanced expression "{text}"')
    parts.append("".join(current).strip())
    return [part for part in parts if part]


@dataclass(frozen=True)
class ExpandItem:
    """
    relation: navigation property to expand
    options: query options applied to the expanded entities
    """

    relation: str
    options: "QueryOptions"


@dataclass(frozen=True)
class QueryOptions:
    filter: Optional[str] = None
    orderby: Tuple[Tuple[str, bool], ...] = ()
    select: Tuple[str, ...] = ()
    expand: Tuple[ExpandItem, ...] = ()
    skip: int = 0
    top: int = STA.DEFAULT_TOP
    count: bool = False
    base_uri: str = ""
    # the options as received, re-emitted in next links
    raw: Mapping[str, str] = field(default_factory=dict)

    @property
    def has_expand(self) -> bool:
        return bool(self.expand)

    @classmethod
    def from_args(cls, args: Mapping[str, str], base_uri: str = "") -> "QueryOptions":
        """
        :param args: url query arguments ($filter, $top, ...)
        :param base_uri: service root url, used for links
        :return: QueryOptions
        """
        unknown = [arg for arg in args if arg.startswith("$") and arg not in PASSTHROUGH_OPTIONS + ("$skip", "$top")]
        if unknown:
            raise ValidationError(f"Unsupported query option(s): {', '.join(unknown)}")

        top = cls._parse_int(args.get("$top"), "$top", get_int_config("DEFAULT_TOP"))
        top = min(top, get_int_config("MAX_TOP"))
        skip = cls._parse_int(args.get("$skip"), "$skip", 0)
        skip = min(skip, get_int_config("MAX_SKIP"))

        count_arg = args.get("$count", "false").strip().lower()
        if count_arg not in ("true", "false"):
            raise ValidationError(f'Invalid $count "{count_arg}"')

        filter_arg = args.get("$filter")
        if filter_arg is not None and not filter_arg.strip():
            filter_arg = None

        return cls(
            filter=filter_arg,
            orderby=cls._parse_orderby(args.get("$orderby", "")),
            select=tuple(split_top_level(args.get("$select", ""), ",")),
            expand=cls._parse_expand(args.get("$expand", ""), base_uri),
            skip=skip,
            top=top,
            count=count_arg == "true",
            base_uri=base_uri,
            raw={k: v for k, v in args.items() if k in PASSTHROUGH_OPTIONS},
        )

    @staticmethod
    def _parse_int(value: Optional[str], name: str, default: int) -> int:
        if value is None or value == "":
            return default
        try:
            result = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid {name} "{value}"')
        if result < 0:
            raise ValidationError(f'Invalid {name} "{value}"')
        return result

    @staticmethod
    def _parse_orderby(orderby: str) -> Tuple[Tuple[str, bool], ...]:
        result = []
        for item in split_top_level(orderby, ","):
            match = ORDERBY_RE.match(item)
            if not match:
                raise ValidationError(f'Invalid $orderby "{item}"')
            result.append((match.group(1), match.group(2) == "desc"))
        return tuple(result)

    @classmethod
    def _parse_expand(cls, expand: str, base_uri: str) -> Tuple[ExpandItem, ...]:
        result: Dict[str, ExpandItem] = {}
        for item in split_top_level(expand, ","):
            match = RELATION_RE.match(item)
            if not match:
                raise ValidationError(f'Invalid $expand "{item}"')
            relation = match.group(1)
            rest = item[match.end() :].strip()
            nested_args = {}
            if rest.startswith("/"):
                # Locations/HistoricalLocations is a shorthand for Locations($expand=HistoricalLocations)
                nested_args["$expand"] = rest[1:]
            elif rest.startswith("(") and rest.endswith(")"):
                for nested in split_top_level(rest[1:-1], ";"):
                    opt_name, sep, opt_val = nested.partition("=")
                    if not sep:
                        raise ValidationError(f'Invalid $expand option "{nested}"')
                    nested_args[opt_name.strip()] = opt_val.strip()
            elif rest:
                raise ValidationError(f'Invalid $expand "{item}"')
            options = cls.from_args(nested_args, base_uri)
            if relation in result:
                # Locations,Locations/Things: merge the nested expansions
                previous = result[relation].options
                options = replace(previous, expand=previous.expand + options.expand)
            result[relation] = ExpandItem(relation, options)
        return tuple(result.values())


@dataclass(frozen=True)
class StaRequest:
    """
    A parsed request: resource path segments + query options
    """

    path_segments: Tuple[PathSegment, ...]
    options: QueryOptions

    @classmethod
    def from_path(cls, path: str, args: Mapping[str, str] = None, base_uri: str = "") -> "StaRequest":
        return cls(tuple(parse_path(path)), QueryOptions.from_args(args or {}, base_uri))
