"""Plain-text rendering of fetch results."""

from typing import Any, Callable, Dict, List, Optional

from .models import FeedItem, FetchResult, Provider

PARENT_EXCERPT_CHARS = 280
TREE_MAX_ENTRIES = 1000


def _heading(title: str, underline: str = "=") -> List[str]:
    return [title, underline * len(title), ""]


def _field(lines: List[str], label: str, value: Any) -> None:
    if value not in (None, ""):
        lines.append(f"{label}: {value}")


def _excerpt(text: str, size: int = PARENT_EXCERPT_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= size else text[: size - 3].rstrip() + "..."


def _format_count(label: str) -> str:
    return label.replace("_", " ").capitalize()


class TextRenderer:
    """
    Renders a FetchResult as llm.txt text.

    Every provider gets a header block for its primary entity followed by
    a numbered item list. Repositories render metadata, the optional tree
    and file contents instead of posts.
    """

    def render(self, result: FetchResult) -> str:
        renderers: Dict[Provider, Callable[[FetchResult], List[str]]] = {
            Provider.FARCASTER: self._farcaster_header,
            Provider.BLUESKY: self._bluesky_header,
            Provider.RSS: self._rss_header,
            Provider.GIT: self._git_header,
        }
        lines = renderers[result.params.provider](result)
        lines.append("")

        if result.params.provider == Provider.GIT:
            lines.extend(self._git_body(result))
        else:
            heading = "Items" if result.params.provider == Provider.RSS else "Posts"
            lines.extend(_heading(heading))
            lines.extend(self._items(result))

        return "\n".join(lines).rstrip("\n") + "\n"

    # Headers

    def _farcaster_header(self, result: FetchResult) -> List[str]:
        user = result.primary_entity
        lines = _heading("Farcaster User Profile")
        lines.append(f"Username: {user.get('username')}")
        lines.append(f"Display Name: {user.get('display_name') or 'N/A'}")
        lines.append(f"FID: {user.get('fid')}")
        _field(lines, "Bio", user.get("bio"))
        _field(lines, "Profile Picture", user.get("pfp"))
        _field(lines, "Followers", user.get("followers"))
        _field(lines, "Following", user.get("following"))
        return lines

    def _bluesky_header(self, result: FetchResult) -> List[str]:
        profile = result.primary_entity
        lines = _heading("Bluesky User Profile")
        lines.append(f"Handle: {profile.get('handle')}")
        lines.append(f"Display Name: {profile.get('display_name') or 'N/A'}")
        lines.append(f"DID: {profile.get('did')}")
        _field(lines, "Bio", profile.get("description"))
        _field(lines, "Avatar", profile.get("avatar"))
        _field(lines, "Followers", profile.get("followers"))
        _field(lines, "Following", profile.get("follows"))
        _field(lines, "Posts", profile.get("posts"))
        return lines

    def _rss_header(self, result: FetchResult) -> List[str]:
        feed = result.primary_entity
        lines = _heading("RSS Feed")
        lines.append(f"Title: {feed.get('title') or 'N/A'}")
        _field(lines, "Description", feed.get("description"))
        _field(lines, "Link", feed.get("link"))
        _field(lines, "Language", feed.get("language"))
        _field(lines, "Last Updated", feed.get("last_build_date"))
        _field(lines, "Generator", feed.get("generator"))
        return lines

    def _git_header(self, result: FetchResult) -> List[str]:
        repo = result.primary_entity
        lines = _heading("Git Repository")
        lines.append(f"Repository: {repo.get('full_name')}")
        _field(lines, "Description", repo.get("description"))
        _field(lines, "URL", repo.get("url"))
        _field(lines, "Branch", result.meta.get("branch") or repo.get("branch"))
        _field(lines, "Commit", result.meta.get("commit_sha"))
        _field(lines, "Language", repo.get("language"))
        _field(lines, "Stars", repo.get("stars"))
        _field(lines, "Forks", repo.get("forks"))
        _field(lines, "License", repo.get("license"))
        if repo.get("topics"):
            lines.append(f"Topics: {', '.join(repo['topics'])}")
        return lines

    # Items

    def _items(self, result: FetchResult) -> List[str]:
        if not result.items:
            return ["No posts found."]

        lines: List[str] = []
        for index, item in enumerate(result.items, start=1):
            lines.extend(self._item(index, item, result.params.include_reactions))
        return lines

    def _item(self, index: int, item: FeedItem, include_reactions: bool) -> List[str]:
        lines = [f"[{index}] {item.timestamp}".rstrip()]
        if item.title:
            lines.append(f"Title: {item.title}")
        if item.author and item.title:
            lines.append(f"Author: {item.author}")
        if item.link:
            lines.append(f"Link: {item.link}")
        if item.is_reply:
            lines.extend(["", "[Reply]"])
            if item.parent is not None:
                lines.append(f"In reply to @{item.parent.author}: {_excerpt(item.parent.body)}")
        if item.body:
            lines.append(item.body)

        if include_reactions and item.reactions:
            lines.extend(["", "Reactions:"])
            lines.extend(
                f"- {_format_count(name)}: {count}" for name, count in item.reactions.items()
            )

        embeds = [embed for embed in item.embeds if embed.url]
        if embeds:
            lines.extend(["", "Embeds:"])
            for embed in embeds:
                label = f" ({embed.title})" if embed.title else ""
                lines.append(f"- {embed.url}{label}")

        categories = item.extra.get("categories")
        if categories:
            lines.append(f"Categories: {', '.join(categories)}")

        lines.extend(["", "---", ""])
        return lines

    # Repository body

    def _git_body(self, result: FetchResult) -> List[str]:
        meta = result.meta
        lines = _heading("Summary")
        _field(lines, "Total Files", meta.get("total_file_count"))
        _field(lines, "Matched Files", meta.get("filtered_file_count"))
        if result.params.include_content:
            _field(lines, "Content Bytes", meta.get("content_bytes"))
            _field(lines, "Estimated Tokens", meta.get("estimated_tokens"))
        lines.append("")

        readme: Optional[str] = result.primary_entity.get("readme")
        if readme:
            lines.extend(_heading("README"))
            lines.extend([readme.rstrip(), ""])

        tree = meta.get("tree")
        if tree is not None:
            lines.extend(_heading("Tree"))
            for entry in tree[:TREE_MAX_ENTRIES]:
                suffix = "/" if entry["type"] == "dir" else ""
                lines.append(f"{entry['path']}{suffix}")
            if len(tree) > TREE_MAX_ENTRIES:
                lines.append(f"... {len(tree) - TREE_MAX_ENTRIES} more entries")
            lines.append("")

        lines.extend(_heading("Files"))
        if not result.items:
            lines.append("No files found.")
            return lines

        for item in result.items:
            size = item.extra.get("size")
            lines.append(f"{item.id} ({size} bytes)" if size is not None else item.id)
            if result.params.include_content:
                if item.extra.get("skipped"):
                    lines.append("[Skipped: too large or unavailable]")
                else:
                    lines.extend(["```", item.body.rstrip("\n"), "```"])
                lines.append("")
        return lines


def render(result: FetchResult) -> str:
    """Render a fetch result as plain text."""
    return TextRenderer().render(result)
