"""
Bluesky connector backed by the public AppView XRPC API.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..clock import Deadline
from ..errors import NotFound, SecondaryLookupFailed
from ..models import Embed, FeedItem, Page, Provider, RequestParams
from .base import Connector

RESOLVE_HANDLE = "/xrpc/com.atproto.identity.resolveHandle"
GET_PROFILE = "/xrpc/app.bsky.actor.getProfile"
GET_AUTHOR_FEED = "/xrpc/app.bsky.feed.getAuthorFeed"
GET_POSTS = "/xrpc/app.bsky.feed.getPosts"

REPOST_REASON = "app.bsky.feed.defs#reasonRepost"


# ===== XRPC SCHEMAS =====

class BskyAuthor(BaseModel):
    did: str
    handle: str = ""


class BskyRef(BaseModel):
    uri: str


class BskyReplyRef(BaseModel):
    parent: Optional[BskyRef] = None
    root: Optional[BskyRef] = None


class BskyRecord(BaseModel):
    text: str = ""
    created_at: str = Field(alias="createdAt")
    reply: Optional[BskyReplyRef] = None


class BskyPost(BaseModel):
    uri: str
    cid: str = ""
    author: BskyAuthor
    record: BskyRecord
    embed: Optional[Dict[str, Any]] = None
    like_count: int = Field(0, alias="likeCount")
    repost_count: int = Field(0, alias="repostCount")
    reply_count: int = Field(0, alias="replyCount")
    quote_count: int = Field(0, alias="quoteCount")


class BskyFeedViewPost(BaseModel):
    post: BskyPost
    reason: Optional[Dict[str, Any]] = None


class BskyAuthorFeed(BaseModel):
    feed: List[BskyFeedViewPost] = []
    cursor: Optional[str] = None


class BskyPosts(BaseModel):
    posts: List[BskyPost] = []


class BskyProfile(BaseModel):
    did: str
    handle: str
    display_name: str = Field("", alias="displayName")
    description: str = ""
    avatar: str = ""
    banner: str = ""
    followers_count: Optional[int] = Field(None, alias="followersCount")
    follows_count: Optional[int] = Field(None, alias="followsCount")
    posts_count: Optional[int] = Field(None, alias="postsCount")


def transform_embed(embed: Optional[Dict[str, Any]]) -> List[Embed]:
    """
    Flatten an embed view into Embeds.

    Images, external links, quoted records and videos are kept; anything
    else is dropped. A record-with-media embed yields both parts.
    """
    if not embed:
        return []
    kind = str(embed.get("$type", ""))

    if kind.startswith("app.bsky.embed.images"):
        return [
            Embed(type="image", url=img.get("fullsize"), description=img.get("alt") or None)
            for img in embed.get("images", [])
        ]
    if kind.startswith("app.bsky.embed.external"):
        external = embed.get("external") or {}
        return [Embed(
            type="external",
            url=external.get("uri"),
            title=external.get("title") or None,
            description=external.get("description") or None,
        )]
    if kind.startswith("app.bsky.embed.recordWithMedia"):
        record = {"$type": "app.bsky.embed.record#view", "record": (embed.get("record") or {}).get("record")}
        return transform_embed(embed.get("media")) + transform_embed(record)
    if kind.startswith("app.bsky.embed.record"):
        record = embed.get("record") or {}
        return [Embed(type="record", url=record.get("uri"))]
    if kind.startswith("app.bsky.embed.video"):
        return [Embed(type="video", url=embed.get("playlist"))]
    return []


def transform_post(post: BskyPost) -> FeedItem:
    """Convert a post view into a FeedItem."""
    reply = post.record.reply
    return FeedItem(
        id=post.uri,
        author=post.author.handle or post.author.did,
        body=post.record.text,
        timestamp=post.record.created_at,
        parent_id=reply.parent.uri if reply and reply.parent else None,
        reactions={
            "likes": post.like_count,
            "reposts": post.repost_count,
            "replies": post.reply_count,
            "quotes": post.quote_count,
        },
        embeds=transform_embed(post.embed),
        extra={
            "cid": post.cid,
            "root_uri": reply.root.uri if reply and reply.root else None,
        },
    )


class BlueskyConnector(Connector):
    """Fetches a Bluesky account's posts from the public AppView."""

    provider = Provider.BLUESKY
    page_size = 100  # getAuthorFeed maximum

    def __init__(self, *args: Any, base_url: str = "https://public.api.bsky.app", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.headers.setdefault("accept", "application/json")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _resolve(self, handle: str, deadline: Optional[Deadline]) -> str:
        # resolveHandle answers 400 for unknown handles
        try:
            data = self._get_json(
                RESOLVE_HANDLE, self._url(RESOLVE_HANDLE), {"handle": handle}, deadline,
                not_found_statuses=(400, 404),
            )
        except NotFound:
            raise NotFound(f"User not found: {handle}") from None
        did = data.get("did")
        if not did:
            raise NotFound(f"User not found: {handle}")
        return did

    def _profile(self, canonical_id: str, deadline: Optional[Deadline]) -> BskyProfile:
        try:
            data = self._get_json(
                GET_PROFILE, self._url(GET_PROFILE), {"actor": canonical_id}, deadline,
                not_found_statuses=(400, 404),
            )
        except NotFound:
            raise NotFound(f"User not found: {canonical_id}") from None
        return self._validate(BskyProfile, data, "profile")

    def fetch_primary(self, canonical_id: str, params: RequestParams,
                      deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        profile = self._profile(canonical_id, deadline)
        return {
            "did": profile.did,
            "handle": profile.handle,
            "display_name": profile.display_name,
            "description": profile.description,
            "avatar": profile.avatar,
            "followers": profile.followers_count,
            "follows": profile.follows_count,
            "posts": profile.posts_count,
        }

    def fetch_page(self, canonical_id: str, cursor: Optional[str], params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Page:
        data = self._get_json(
            GET_AUTHOR_FEED,
            self._url(GET_AUTHOR_FEED),
            {
                "actor": canonical_id,
                "limit": self.page_size,
                "cursor": cursor,
                "filter": "posts_with_replies" if params.include_replies else "posts_no_replies",
            },
            deadline,
        )
        feed = self._validate(BskyAuthorFeed, data, "author feed")
        # Reposts are someone else's content
        items = [
            transform_post(entry.post)
            for entry in feed.feed
            if not (entry.reason and entry.reason.get("$type") == REPOST_REASON)
        ]
        return Page(items=items, next_cursor=feed.cursor or None)

    def _lookup_one(self, item_id: str, deadline: Optional[Deadline]) -> FeedItem:
        data = self._get_json(GET_POSTS, self._url(GET_POSTS), {"uris": item_id}, deadline)
        posts = self._validate(BskyPosts, data, "posts").posts
        if not posts:
            raise SecondaryLookupFailed(f"Post not found: {item_id}")
        return transform_post(posts[0])

    def count_hint(self, canonical_id: str, params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Optional[int]:
        return self._profile(canonical_id, deadline).posts_count
