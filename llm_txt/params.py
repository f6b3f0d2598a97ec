"""
Query-string encoding of RequestParams.

``build_query`` is what the client SDK puts on the wire and
``parse_query`` is the server's boundary validation of the same
parameters; both live here so the two sides read and write one format.
"""
from typing import List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from .errors import InvalidParameter
from .models import IDENTIFIER_FIELDS, IdentifierKind, Provider, RequestParams, SortOrder

# Route prefix per provider on the llm-txt service
ROUTES = {
    Provider.FARCASTER: "",
    Provider.BLUESKY: "/bsky",
    Provider.RSS: "/rss",
    Provider.GIT: "/git",
}


def build_query(params: RequestParams) -> str:
    """
    Encode params as a query string.

    Only non-default values are written: ``limit`` is dropped when
    fetching all, ``sortOrder`` only appears when it is not "newest",
    and booleans only appear when true.
    """
    pairs: List[Tuple[str, str]] = [(params.identifier_field, params.identifier)]

    if params.branch:
        pairs.append(("branch", params.branch))
    if params.limit and not params.fetch_all:
        pairs.append(("limit", str(params.limit)))
    if params.fetch_all:
        pairs.append(("all", "true"))
    if params.include_replies:
        pairs.append(("includeReplies", "true"))
    if params.include_parents:
        pairs.append(("includeParents", "true"))
    if params.include_tree:
        pairs.append(("includeTree", "true"))
    if params.include_content:
        pairs.append(("includeContent", "true"))
    if params.max_file_size:
        pairs.append(("maxFileSize", str(params.max_file_size)))
    if params.include_patterns:
        pairs.append(("include", ",".join(params.include_patterns)))
    if params.exclude_patterns:
        pairs.append(("exclude", ",".join(params.exclude_patterns)))
    if params.sort_order != SortOrder.NEWEST:
        pairs.append(("sortOrder", params.sort_order.value))
    if params.include_reactions:
        pairs.append(("includeReactions", "true"))

    return urlencode(pairs)


def build_path(params: RequestParams, estimate: bool = False) -> str:
    """Service path plus query string, e.g. ``/bsky/estimate?handle=...``."""
    route = ROUTES[params.provider]
    if estimate:
        route = f"{route}/estimate"
    return f"{route}?{build_query(params)}"


def _parse_bool(value: Optional[str]) -> bool:
    return str(value).lower() == "true"


def _parse_positive_int(value: Optional[str], message: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(message) from None
    if number <= 0:
        raise InvalidParameter(message)
    return number


def _parse_patterns(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(p.strip() for p in value.split(",") if p.strip())


def parse_query(provider: Provider, query: Mapping[str, str]) -> RequestParams:
    """
    Validate a raw query mapping into RequestParams.

    Raises:
        InvalidParameter: On a missing/duplicate identifier, a non-numeric
            or non-positive number, or an unknown sort order
    """
    fields = IDENTIFIER_FIELDS[provider]
    supplied = [(name, query[name]) for name in fields if query.get(name)]
    if not supplied:
        raise InvalidParameter(f"{' or '.join(fields)} required")
    if len(supplied) > 1:
        raise InvalidParameter(f"only one of {' or '.join(fields)} may be given")

    name, identifier = supplied[0]
    kind = fields[name]
    if provider == Provider.FARCASTER and kind == IdentifierKind.ID:
        identifier = str(_parse_positive_int(identifier, "Invalid FID"))

    sort_value = query.get("sortOrder") or SortOrder.NEWEST.value
    try:
        sort_order = SortOrder(sort_value)
    except ValueError:
        raise InvalidParameter("Invalid sortOrder (must be 'newest' or 'oldest')") from None

    return RequestParams(
        provider=provider,
        identifier=identifier,
        identifier_kind=kind,
        limit=_parse_positive_int(query.get("limit"), "Invalid limit"),
        fetch_all=_parse_bool(query.get("all")),
        include_replies=_parse_bool(query.get("includeReplies")),
        include_parents=_parse_bool(query.get("includeParents")),
        include_reactions=_parse_bool(query.get("includeReactions")),
        include_content=_parse_bool(query.get("includeContent")),
        sort_order=sort_order,
        branch=query.get("branch") or None,
        include_tree=_parse_bool(query.get("includeTree")),
        include_patterns=_parse_patterns(query.get("include")),
        exclude_patterns=_parse_patterns(query.get("exclude")),
        max_file_size=_parse_positive_int(query.get("maxFileSize"), "Invalid maxFileSize"),
    )
