from typing import Optional
from urllib.parse import parse_qs, urljoin, urlparse

DESKTOP_ADDRESS = "https://www.facebook.com"
MOBILE_ADDRESS = "https://m.facebook.com"


def story_to_permalink(url: Optional[str], username: Optional[str] = None, post_id: Optional[str] = None) -> Optional[str]:
    """
    Turn a mobile story link into a desktop permalink.

    story.php?story_fbid=1&id=2 -> https://www.facebook.com/<username or id>/posts/<post_id or 1>
    Anything else keeps its path and query but moves to the desktop host.
    Returns None when there isn't enough to build a link.
    """
    if not url:
        return None

    parsed = urlparse(urljoin(MOBILE_ADDRESS, url))
    query = parse_qs(parsed.query)
    story_fbid = (query.get("story_fbid") or [None])[0]
    owner = (query.get("id") or [None])[0]

    if story_fbid or "story.php" in parsed.path:
        post_id = post_id or story_fbid
        owner = username or owner
        if not post_id or not owner:
            return None
        return f"{DESKTOP_ADDRESS}/{owner}/posts/{post_id}"

    if not parsed.path or parsed.path == "/":
        return None

    out = f"{DESKTOP_ADDRESS}{parsed.path}"
    return f"{out}?{parsed.query}" if parsed.query else out


def is_alias_path(url: str) -> bool:
    """Group posts and profile.php links aren't page posts, don't queue them."""
    path = urlparse(url).path
    return "/groups/" in path or "/profile.php" in path
