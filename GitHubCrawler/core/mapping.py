"""
Mapping of GitHub API JSON into domain entities.

Every function here is pure. Optional fields fall back to the zero value of
their type; a missing or mistyped required field raises
MalformedResponseError for that record only.
"""

import logging
from typing import Any, Callable, List, Mapping, Optional, Tuple, TypeVar

from requests.utils import parse_header_links

from core.entities import User, Org, Emoji, Gitignore, License, RepoBranch
from core.errors import MalformedResponseError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _require_node(node: Any, what: str) -> dict:
    if not isinstance(node, dict):
        raise MalformedResponseError(f"{what}: expected object, got {type(node).__name__}")
    return node


def _required_str(node: dict, key: str, what: str) -> str:
    value = node.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedResponseError(f"{what}: missing or invalid '{key}'")
    return value


def _required_int(node: dict, key: str, what: str) -> int:
    value = node.get(key)
    # bool is an int subclass, and never a valid id
    if not isinstance(value, int) or isinstance(value, bool):
        raise MalformedResponseError(f"{what}: missing or invalid '{key}'")
    return value


def _str(node: dict, key: str) -> str:
    value = node.get(key)
    return value if isinstance(value, str) else ""


def _int(node: dict, key: str) -> int:
    value = node.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _strings(node: dict, key: str) -> tuple:
    value = node.get(key)
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str))


def map_user(node: Any) -> User:
    """
    Map a /users/{login} response to a User.

    Args:
        node: Parsed JSON object

    Returns:
        User entity
    """
    node = _require_node(node, "user")
    return User(
        login=_required_str(node, "login", "user"),
        user_id=_required_int(node, "id", "user"),
        name=_str(node, "name"),
        company=_str(node, "company"),
        blog=_str(node, "blog"),
        location=_str(node, "location"),
        email=_str(node, "email"),
        bio=_str(node, "bio"),
        user_type=_str(node, "type"),
        public_repos=_int(node, "public_repos"),
        followers=_int(node, "followers"),
        following=_int(node, "following"),
        created_at=_str(node, "created_at"),
        updated_at=_str(node, "updated_at"),
    )


def map_org(node: Any) -> Org:
    """Map a /orgs/{login} response to an Org."""
    node = _require_node(node, "org")
    return Org(
        login=_required_str(node, "login", "org"),
        org_id=_required_int(node, "id", "org"),
        name=_str(node, "name"),
        description=_str(node, "description"),
        blog=_str(node, "blog"),
        location=_str(node, "location"),
        email=_str(node, "email"),
        public_repos=_int(node, "public_repos"),
        followers=_int(node, "followers"),
        created_at=_str(node, "created_at"),
        updated_at=_str(node, "updated_at"),
    )


def map_emojis(node: Any) -> Tuple[List[Emoji], int]:
    """
    Map the /emojis object (name -> image URL) to Emoji entities.

    Returns:
        Tuple of (emojis, number of skipped entries)
    """
    node = _require_node(node, "emojis")
    emojis = []
    skipped = 0
    for name, url in node.items():
        if not isinstance(url, str) or not url:
            logger.warning(f"Skipping emoji {name!r}: invalid url")
            skipped += 1
            continue
        emojis.append(Emoji(name=name, url=url))
    return emojis, skipped


def map_gitignore(node: Any) -> Gitignore:
    node = _require_node(node, "gitignore")
    return Gitignore(
        name=_required_str(node, "name", "gitignore"),
        # an empty template is still a template
        source=_str(node, "source"),
    )


def map_license(node: Any) -> License:
    """Map a /licenses/{key} response to a License."""
    node = _require_node(node, "license")
    return License(
        key=_required_str(node, "key", "license"),
        name=_required_str(node, "name", "license"),
        spdx_id=_str(node, "spdx_id"),
        url=_str(node, "url"),
        html_url=_str(node, "html_url"),
        description=_str(node, "description"),
        implementation=_str(node, "implementation"),
        body=_str(node, "body"),
        permissions=_strings(node, "permissions"),
        conditions=_strings(node, "conditions"),
        limitations=_strings(node, "limitations"),
    )


def map_branch(node: Any, repo: str) -> RepoBranch:
    """Map one element of /repos/{owner}/{repo}/branches."""
    node = _require_node(node, "branch")
    commit = node.get("commit")
    sha = _str(commit, "sha") if isinstance(commit, dict) else ""
    protected = node.get("protected")
    return RepoBranch(
        repo=repo,
        name=_required_str(node, "name", "branch"),
        commit_sha=sha,
        protected=protected if isinstance(protected, bool) else False,
    )


def map_login(node: Any) -> str:
    """Login of a user or organization summary."""
    return _required_str(_require_node(node, "account"), "login", "account")


def map_license_key(node: Any) -> str:
    return _required_str(_require_node(node, "license"), "key", "license")


def map_repo_full_name(node: Any) -> str:
    """owner/name of a repository summary."""
    return _required_str(_require_node(node, "repository"), "full_name", "repository")


def map_template_name(node: Any) -> str:
    """Elements of /gitignore/templates are bare strings."""
    if not isinstance(node, str) or not node:
        raise MalformedResponseError("gitignore template: expected non-empty string")
    return node


def map_each(mapper: Callable[[Any], T], nodes: List[Any], what: str) -> Tuple[List[T], int]:
    """
    Map every element of a listing, skipping the ones that fail.

    Args:
        mapper: Function mapping one JSON node
        nodes: Listing elements
        what: Label used in log lines

    Returns:
        Tuple of (mapped values, number of skipped elements)
    """
    results = []
    skipped = 0
    for position, node in enumerate(nodes):
        try:
            results.append(mapper(node))
        except MalformedResponseError as e:
            logger.warning(f"Skipping {what} element {position}: {e}")
            skipped += 1
    return results, skipped


def listing_elements(body: Any) -> Optional[list]:
    """
    Extract the element list of a collection body.

    Accepts a bare JSON array or an object carrying the array under "items"
    (search style). Returns None when the body is not a collection.
    """
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get("items"), list):
        return body["items"]
    return None


def next_page_url(headers: Mapping[str, str]) -> Optional[str]:
    """
    Extract the rel="next" URL of a Link header, if any.

    Args:
        headers: Response headers (case-insensitive mapping)

    Returns:
        Absolute URL of the next page, or None on the last page
    """
    link = headers.get("Link") or headers.get("link")
    if not link:
        return None
    for entry in parse_header_links(link):
        if entry.get("rel") == "next" and entry.get("url"):
            return entry["url"]
    return None
