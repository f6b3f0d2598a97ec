"""
Farcaster connector backed by the Neynar v2 API.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..clock import Deadline
from ..errors import NotFound, SecondaryLookupFailed
from ..models import Embed, FeedItem, Page, Provider, RequestParams
from .base import Connector

USER_BY_USERNAME = "/v2/farcaster/user/by_username"
USER_BULK = "/v2/farcaster/user/bulk"
USER_CASTS = "/v2/farcaster/feed/user/casts"
CAST = "/v2/farcaster/cast"


# ===== NEYNAR SCHEMAS =====

class NeynarAuthor(BaseModel):
    fid: int
    username: str = ""


class NeynarEmbed(BaseModel):
    url: Optional[str] = None


class NeynarReactions(BaseModel):
    likes_count: int = 0
    recasts_count: int = 0


class NeynarCast(BaseModel):
    hash: str
    thread_hash: Optional[str] = None
    parent_hash: Optional[str] = None
    author: NeynarAuthor
    text: str = ""
    timestamp: str
    embeds: List[NeynarEmbed] = []
    reactions: NeynarReactions = NeynarReactions()


class NeynarNext(BaseModel):
    cursor: Optional[str] = None


class NeynarCastsPage(BaseModel):
    casts: List[NeynarCast] = []
    next: Optional[NeynarNext] = None


class NeynarBio(BaseModel):
    text: str = ""


class NeynarProfile(BaseModel):
    bio: NeynarBio = NeynarBio()


class NeynarUser(BaseModel):
    fid: int
    username: str
    display_name: str = ""
    pfp_url: str = ""
    follower_count: Optional[int] = None
    following_count: Optional[int] = None
    profile: NeynarProfile = NeynarProfile()


class NeynarUsers(BaseModel):
    users: List[NeynarUser] = []


def transform_cast(cast: NeynarCast) -> FeedItem:
    """Convert a Neynar cast into a FeedItem."""
    return FeedItem(
        id=cast.hash,
        author=cast.author.username or str(cast.author.fid),
        body=cast.text,
        timestamp=cast.timestamp,
        parent_id=cast.parent_hash or None,
        reactions={
            "likes": cast.reactions.likes_count,
            "recasts": cast.reactions.recasts_count,
        },
        embeds=[Embed(type="url", url=e.url) for e in cast.embeds if e.url],
        extra={"thread_hash": cast.thread_hash, "author_fid": cast.author.fid},
    )


class FarcasterConnector(Connector):
    """Fetches a Farcaster user's casts through Neynar."""

    provider = Provider.FARCASTER
    page_size = 150  # Neynar maximum for feed/user/casts

    def __init__(self, *args: Any, api_key: Optional[str] = None,
                 base_url: str = "https://api.neynar.com", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.headers.setdefault("accept", "application/json")
        if api_key:
            self.headers["x-api-key"] = api_key

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _resolve(self, handle: str, deadline: Optional[Deadline]) -> str:
        try:
            data = self._get_json(
                USER_BY_USERNAME, self._url(USER_BY_USERNAME),
                {"username": handle}, deadline,
            )
        except NotFound:
            raise NotFound(f"User not found: {handle}") from None
        fid = (data.get("user") or {}).get("fid")
        if not fid:
            raise NotFound(f"User not found: {handle}")
        return str(fid)

    def fetch_primary(self, canonical_id: str, params: RequestParams,
                      deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        data = self._get_json(USER_BULK, self._url(USER_BULK), {"fids": canonical_id}, deadline)
        users = self._validate(NeynarUsers, data, "user lookup").users
        if not users:
            raise NotFound(f"User not found: {canonical_id}")
        user = users[0]
        return {
            "fid": user.fid,
            "username": user.username,
            "display_name": user.display_name,
            "bio": user.profile.bio.text,
            "pfp": user.pfp_url,
            "followers": user.follower_count,
            "following": user.following_count,
        }

    def fetch_page(self, canonical_id: str, cursor: Optional[str], params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Page:
        data = self._get_json(
            USER_CASTS,
            self._url(USER_CASTS),
            {
                "fid": canonical_id,
                "limit": self.page_size,
                "cursor": cursor,
                "include_replies": "true" if params.include_replies else None,
            },
            deadline,
        )
        page = self._validate(NeynarCastsPage, data, "cast page")
        return Page(
            items=[transform_cast(c) for c in page.casts],
            next_cursor=(page.next.cursor if page.next else None) or None,
        )

    def _lookup_one(self, item_id: str, deadline: Optional[Deadline]) -> FeedItem:
        data = self._get_json(CAST, self._url(CAST), {"identifier": item_id, "type": "hash"}, deadline)
        if not data.get("cast"):
            raise SecondaryLookupFailed(f"Cast not found: {item_id}")
        return transform_cast(self._validate(NeynarCast, data["cast"], "cast"))
