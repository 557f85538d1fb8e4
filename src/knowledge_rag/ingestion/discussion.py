"""Client and rendering helpers for the external discussion API.

The discussion service exposes three read endpoints under its API root::

    GET posts?page=&size=&type=&boardId=       -> {"data": [...], "total": n}
    GET posts/<id>?textContent=1&locale=       -> {"post": {...}, "languages": [...]}
    GET posts/<id>/comments?page=&size=        -> {"data": [...], "total": n}

Listings are paged until an empty page comes back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import requests

logger = logging.getLogger(__name__)


def empty_discussion() -> dict[str, Any]:
    """Result returned when a thread cannot be fetched."""
    return {"post": None, "languages": []}


class DiscussionClient:
    """Thin ``requests`` wrapper around the discussion API.

    Parameters
    ----------
    base_url:
        API root, e.g. ``http://localhost:3030/api/call``.
    page_size:
        Page size used by the listing iterators.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        page_size: int = 20,
        *,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.timeout = timeout
        self._session = session or requests.Session()

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        resp = self._session.get(
            f"{self.base_url}/{path}",
            params={key: value for key, value in params.items() if value is not None},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    # -- threads --------------------------------------------------------------

    def get_discussion(self, discussion_id: str, locale: str | None = None) -> dict[str, Any]:
        """Return ``{"post": ..., "languages": [...]}``; failures yield an empty post."""
        try:
            data = self._get(f"posts/{discussion_id}", {"textContent": 1, "locale": locale})
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Failed to fetch discussion %s (locale=%s): %s", discussion_id, locale, exc)
            return empty_discussion()

        if not data or not isinstance(data, dict):
            logger.warning("Discussion %s not found (locale=%s)", discussion_id, locale)
            return empty_discussion()
        return data

    def search_discussions(
        self,
        *,
        page: int,
        size: int,
        thread_type: str = "discussion",
        board_id: str | None = None,
    ) -> dict[str, Any]:
        return self._get("posts", {"page": page, "size": size, "type": thread_type, "boardId": board_id})

    def iter_discussions(self, thread_type: str = "discussion", board_id: str | None = None) -> Iterator[dict[str, Any]]:
        """Yield ``{"id", "title", "index", "total"}`` for every listed thread."""
        page = 0
        index = 0
        while True:
            page += 1
            result = self.search_discussions(page=page, size=self.page_size, thread_type=thread_type, board_id=board_id)
            items = result.get("data") or []
            if not items:
                break
            for item in items:
                index += 1
                yield {"id": item["id"], "title": item.get("title", ""), "index": index, "total": result.get("total")}

    # -- comments -------------------------------------------------------------

    def get_comments(self, discussion_id: str, *, page: int, size: int) -> dict[str, Any]:
        return self._get(f"posts/{discussion_id}/comments", {"page": page, "size": size, "textContent": 1})

    def iter_comments(self, discussion_id: str) -> Iterator[dict[str, Any]]:
        page = 0
        index = 0
        while True:
            page += 1
            items = self.get_comments(discussion_id, page=page, size=self.page_size).get("data") or []
            if not items:
                break
            for item in items:
                index += 1
                yield {
                    "id": item["id"],
                    "index": index,
                    "content": item.get("content", ""),
                    "commentAuthorName": (item.get("author") or {}).get("fullName", ""),
                    "commentCreatedAt": item.get("createdAt"),
                    "commentUpdatedAt": item.get("updatedAt"),
                }

    def get_thread(self, discussion_id: str) -> dict[str, Any] | None:
        """Fetch a thread with every locale variant and all of its comments.

        Returns the primary post with ``languagesResult`` and ``comments``
        attached, or ``None`` when the thread does not exist.
        """
        discussion = self.get_discussion(discussion_id)
        post = discussion.get("post")
        if not post:
            return None

        variants = []
        for language in discussion.get("languages") or []:
            if language == post.get("locale"):
                continue
            translated = self.get_discussion(discussion_id, language).get("post")
            if translated:
                variants.append(translated)

        try:
            comments = list(self.iter_comments(discussion_id))
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Failed to page comments of discussion %s: %s", discussion_id, exc)
            comments = []

        return {**post, "languagesResult": variants, "comments": comments}


# ── Rendering ─────────────────────────────────────────────────────────


def build_post_link(app_url: str, post: dict[str, Any], thread_id: str) -> str:
    """Return the public URL of a thread.

    Blogs live under ``blog/<locale>``, docs under ``docs/<board>/<locale>``
    and everything else under ``discussions``.
    """
    locale = post.get("locale") or ""
    post_type = post.get("type")
    if post_type == "blog":
        parts = ["blog", locale]
    elif post_type == "doc":
        parts = ["docs", (post.get("board") or {}).get("id") or "", locale]
    else:
        parts = ["discussions"]

    segments = [str(part).strip("/") for part in (*parts, thread_id) if part]
    return f"{app_url.rstrip('/')}/{'/'.join(segments)}"


def _author_name(author: Any) -> str:
    if isinstance(author, dict):
        return author.get("fullName") or ""
    return author or ""


def _id_line(item_id: Any, link: str) -> str:
    if link:
        return f"[ID:{item_id}](#{link})\n"
    return f"#### ID:{item_id}\n"


def discussion_to_markdown(post: dict[str, Any] | None, link: str = "") -> str:
    """Render a discussion post, its locale variants and comments as markdown."""
    if not post:
        return ""
    if not isinstance(post, dict):
        raise TypeError(f"expected a discussion post mapping, got {type(post).__name__}")

    markdown = f"## {post.get('title') or ''}\n\n"

    for lang in [post, *(post.get("languagesResult") or [])]:
        if not lang:
            continue
        markdown += "### Language:\n"
        markdown += _id_line(lang.get("id", ""), link)
        if lang.get("content"):
            markdown += f"#### Content\n\t{lang['content']}\n"
        if lang.get("locale"):
            markdown += f"#### Locale\n\t{lang['locale']}\n"
        author = _author_name(lang.get("author"))
        if author:
            markdown += f"#### Author\n\t{author}\n"
        markdown += f"#### Created At\n\t{lang.get('createdAt', '')}\n"
        markdown += f"#### Updated At\n\t{lang.get('updatedAt', '')}\n\n"

    for comment in post.get("comments") or []:
        markdown += "### Comments:\n"
        markdown += _id_line(comment.get("id", ""), link)
        markdown += f"#### Content\n\t{comment.get('content', '')}\n"
        markdown += f"#### Author\n\t{comment.get('commentAuthorName', '')}\n"
        markdown += f"#### Created At\n\t{comment.get('commentCreatedAt', '')}\n"
        markdown += f"#### Updated At\n\t{comment.get('commentUpdatedAt', '')}\n\n"

    return markdown
