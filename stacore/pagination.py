"""
Next page links

The link repeats the request path, with the literal id of the navigation source written
into the segment that introduced it, followed by the recomputed $skip / $top and the other
query options of the request:

    Things(1)/Locations?$skip=20&$top=20&$filter=name%20eq%20%27x%27
"""
from typing import Mapping, Optional, Sequence
from urllib.parse import quote, urlencode

from .request import PASSTHROUGH_OPTIONS, PathSegment, format_key


def next_link(
    total_count: int,
    skip: Optional[int],
    top: int,
    path_segments: Sequence[PathSegment],
    navigation=None,
    base_uri: str = "",
    options: Mapping[str, str] = None,
) -> Optional[str]:
    """
    :param total_count: number of matching entities
    :param skip: offset of the current page
    :param top: page size used to fetch the current page
    :param path_segments: path of the request
    :param navigation: NavigationContext of the request
    :param base_uri: service root url
    :param options: query options to repeat ($filter, $orderby, ...)
    :return: url of the next page or None if this is the last page
    """
    offset = (skip or 0) + top
    if top <= 0 or total_count <= offset:
        return None

    segments = [str(segment) for segment in path_segments]
    source_segment = getattr(navigation, "source_segment", None)
    if source_segment is not None:
        segment = path_segments[source_segment]
        segments[source_segment] = f"{segment.name}({format_key(navigation.source_id)})"

    query = [("$skip", offset), ("$top", top)]
    options = options or {}
    query += [(name, options[name]) for name in PASSTHROUGH_OPTIONS if name in options]
    query_string = urlencode(query, safe="$',()/", quote_via=quote)
    return f"{base_uri.rstrip('/')}/{'/'.join(segments)}?{query_string}"
