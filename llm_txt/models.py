"""
Provider-agnostic data models for the fetch pipeline.

Connectors produce these, the aggregator enriches them, and the text
renderer consumes them.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidParameter


class Provider(Enum):
    """Supported upstream providers."""
    FARCASTER = "farcaster"
    BLUESKY = "bluesky"
    RSS = "rss"
    GIT = "git"


class IdentifierKind(Enum):
    """How the caller named the primary entity."""
    ID = "id"          # fid, did
    HANDLE = "handle"  # username, handle
    URL = "url"        # feed URL, repository URL


class SortOrder(Enum):
    NEWEST = "newest"
    OLDEST = "oldest"


# Query-string name of each identifier form, per provider
IDENTIFIER_FIELDS: Dict[Provider, Dict[str, IdentifierKind]] = {
    Provider.FARCASTER: {"fid": IdentifierKind.ID, "username": IdentifierKind.HANDLE},
    Provider.BLUESKY: {"did": IdentifierKind.ID, "handle": IdentifierKind.HANDLE},
    Provider.RSS: {"url": IdentifierKind.URL},
    Provider.GIT: {"url": IdentifierKind.URL},
}


def normalize_handle(handle: str) -> str:
    """Lower-case a handle and strip a leading '@'."""
    handle = handle.strip().lower()
    if handle.startswith("@"):
        handle = handle[1:]
    return handle


@dataclass(frozen=True)
class RequestParams:
    """
    Validated request parameters.

    The identifier is normalized on construction so every cache key and
    fingerprint built from it is canonical.
    """
    provider: Provider
    identifier: str
    identifier_kind: IdentifierKind
    limit: Optional[int] = None
    fetch_all: bool = False
    include_replies: bool = False
    include_parents: bool = False
    include_reactions: bool = False
    include_content: bool = False
    sort_order: SortOrder = SortOrder.NEWEST
    # Git-only options
    branch: Optional[str] = None
    include_tree: bool = False
    include_patterns: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()
    max_file_size: Optional[int] = None

    def __post_init__(self):
        if not self.identifier or not str(self.identifier).strip():
            raise InvalidParameter("identifier must not be empty")
        identifier = str(self.identifier).strip()
        if self.identifier_kind == IdentifierKind.HANDLE:
            identifier = normalize_handle(identifier)
        object.__setattr__(self, "identifier", identifier)
        object.__setattr__(self, "include_patterns", tuple(self.include_patterns))
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))
        if self.limit is not None and self.limit <= 0:
            raise InvalidParameter("Invalid limit")

    @property
    def identifier_field(self) -> str:
        """Query-string name for this identifier (e.g. 'username')."""
        for name, kind in IDENTIFIER_FIELDS[self.provider].items():
            if kind == self.identifier_kind:
                return name
        raise InvalidParameter(
            f"{self.provider.value} does not accept a {self.identifier_kind.value} identifier"
        )

    @classmethod
    def from_options(cls, provider: Provider, **options: Any) -> "RequestParams":
        """
        Build params from keyword options named like the query string.

        Exactly one identifier option for the provider must be given,
        e.g. ``from_options(Provider.FARCASTER, username="@Alice", limit=5)``.
        """
        fields = IDENTIFIER_FIELDS[provider]
        supplied = [
            (name, options.pop(name))
            for name in list(fields)
            if options.get(name) not in (None, "")
        ]
        for name in fields:
            options.pop(name, None)
        if len(supplied) != 1:
            names = " or ".join(fields)
            raise InvalidParameter(f"exactly one of {names} is required")

        name, value = supplied[0]
        sort_order = options.pop("sort_order", SortOrder.NEWEST) or SortOrder.NEWEST
        if not isinstance(sort_order, SortOrder):
            try:
                sort_order = SortOrder(sort_order)
            except ValueError:
                raise InvalidParameter(
                    "Invalid sortOrder (must be 'newest' or 'oldest')"
                ) from None
        return cls(
            provider=provider,
            identifier=str(value),
            identifier_kind=fields[name],
            sort_order=sort_order,
            **options,
        )


@dataclass
class Embed:
    """Link, media or quoted record attached to an item."""
    type: str
    url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass
class FeedItem:
    """
    Provider-agnostic feed item.

    ``parent`` is only populated by the aggregator's batched parent
    lookup, never during the primary page loop.
    """
    id: str
    author: str
    body: str
    timestamp: str
    parent_id: Optional[str] = None
    parent: Optional["FeedItem"] = None
    reactions: Optional[Dict[str, int]] = None
    embeds: List[Embed] = field(default_factory=list)
    title: Optional[str] = None
    link: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None


@dataclass
class Page:
    """One page of provider results. The cursor is opaque."""
    items: List[FeedItem]
    next_cursor: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FetchResult:
    """Structured result handed to the text renderer."""
    primary_entity: Dict[str, Any]
    items: Tuple[FeedItem, ...]
    params: RequestParams
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Estimate:
    """Server price estimate."""
    price: str
    is_free: bool
    count_hint: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "price": self.price,
            "isFree": self.is_free,
            "countHint": self.count_hint,
        }
