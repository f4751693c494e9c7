"""
=============================================================================
STATIC FILE STAGE
=============================================================================

Serves files from one directory for one URL prefix, and passes everything
else through to the next stage.

    StaticFile("/public", "./public")

    GET /public/css/site.css   →  ./public/css/site.css
    GET /public/docs/          →  ./public/docs/index.html
    GET /api/users             →  not ours, Continue
    POST /public/css/site.css  →  not ours, Continue

=============================================================================
THREE STEPS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   request.target                                                    │
    │        │                                                             │
    │        ▼                                                             │
    │   url_to_file_path()   pure text: drop ?query, decode %XX, remove   │
    │        │               dot segments, "dir/" → "dir/index.html"      │
    │        ▼                                                             │
    │   contain()            must start with url_root; strip it; join     │
    │        │               onto resolve(fs_root); resolve again; must   │
    │        │               still be inside resolve(fs_root)             │
    │        ▼                                                             │
    │   is_file()?  ──no──►  Continue (maybe a later stage knows it)      │
    │        │                                                             │
    │       yes                                                            │
    │        ▼                                                             │
    │   response.send_file() → TERMINATE                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every failure on the way is a plain pass-through. A traversal attempt looks
exactly like a missing file from the outside: no 403, nothing that tells a
client where the root is.

=============================================================================
WHY CHECK AFTER JOINING?
=============================================================================

Checking the URL string alone is not enough:

    /public/..%2f..%2fetc/passwd     encoded separators
    /public/%2e%2e/%2e%2e/etc/passwd encoded dots
    /public/link-to-etc/passwd       a symlink inside the root

Only the fully resolved filesystem path tells the truth, so the
containment test runs on Path.resolve() of the joined path, against
Path.resolve() of the root.

=============================================================================
"""

from pathlib import Path, PurePosixPath
from typing import Any, Optional, Union
from urllib.parse import unquote
import logging
import os
import re

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from ..middleware.base import Middleware, Continue, TERMINATE, Outcome


logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"

SERVED_METHODS = ("GET", "HEAD")

# "%" not followed by two hex digits.
_BAD_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")

# Whitespace and control characters are never valid in a raw path.
_RAW_FORBIDDEN = re.compile(r"[\x00-\x20\x7f]")

# Control characters smuggled in through percent-encoding.
_DECODED_FORBIDDEN = re.compile(r"[\x00-\x1f\x7f]")


# =============================================================================
# PATH RESOLVER
# =============================================================================

def url_to_file_path(url_path: str, index_file: str = INDEX_FILE) -> Optional[PurePosixPath]:
    """
    Turn the path part of a request target into an absolute, decoded,
    dot-free path. No filesystem access.

    Examples:
        "/public/a.txt?v=2"        → /public/a.txt
        "/public/docs/"            → /public/docs/index.html
        "/public/x/../a.txt"       → /public/a.txt
        "/public/%2e%2e/a.txt"     → /a.txt
        "/"                        → /index.html

    Returns None when the path is not a valid URL path: not absolute, bad
    percent-encoding, raw whitespace or control characters, bytes that are
    not UTF-8, or an encoded "/" inside a segment.

    Args:
        url_path: Request target, query string allowed.
        index_file: Name appended to directory paths.
    """
    path = url_path.split("?", 1)[0].split("#", 1)[0]

    if not path.startswith("/"):
        return None
    if _RAW_FORBIDDEN.search(path) or _BAD_PERCENT.search(path):
        return None

    segments: list[str] = []
    is_directory = path.endswith("/")

    for raw_segment in path[1:].split("/"):
        try:
            segment = unquote(raw_segment, errors="strict")
        except UnicodeDecodeError:
            return None

        # "%2f" would become a separator the URL never had.
        if "/" in segment or _DECODED_FORBIDDEN.search(segment):
            return None

        # Same dot-segment removal a URL parser performs; ".." at the top
        # stays at the top.
        if segment == "..":
            if segments:
                segments.pop()
            is_directory = True
        elif segment == ".":
            is_directory = True
        elif segment:
            segments.append(segment)
            is_directory = False

    if path.endswith("/"):
        is_directory = True

    if is_directory:
        segments.append(index_file)

    return PurePosixPath("/", *segments)


# =============================================================================
# CONTAINMENT GUARD
# =============================================================================

def _url_prefix(url_root: str) -> PurePosixPath:
    """'/public/', 'public' and '/public' all mean /public; '' means /."""
    return PurePosixPath("/" + url_root.strip("/"))


def contain(
    resolved_path: Union[str, PurePosixPath],
    url_root: str,
    fs_root: Union[str, os.PathLike],
) -> Optional[Path]:
    """
    Map a resolved URL path to a file under fs_root, or refuse.

    1. resolved_path must start with url_root, compared component by
       component ("/public" does not match "/publicity").
    2. Strip url_root, leaving a root-relative remainder.
    3. Canonicalize fs_root and join the remainder onto it, then
       canonicalize the joined path (follows "..", ".", symlinks).
    4. The result must be the root itself or lie beneath it.

    Never raises for bad input: every failure returns None, which callers
    treat as "not found".

    Returns:
        Canonical path inside fs_root, or None.
    """
    try:
        remainder = PurePosixPath(resolved_path).relative_to(_url_prefix(url_root))
    except ValueError:
        return None

    try:
        root = Path(fs_root).resolve(strict=True)
        candidate = root.joinpath(*remainder.parts).resolve()
    except (OSError, RuntimeError, ValueError):
        # Missing root, symlink loop, embedded NUL, name too long...
        return None

    try:
        candidate.relative_to(root)
    except ValueError:
        return None

    return candidate


def _is_regular_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


# =============================================================================
# STATIC FILE STAGE
# =============================================================================

class StaticFile(Middleware):
    """
    Pipeline stage serving files from fs_root under url_root.

    Only GET and HEAD are considered; HEAD gets the same head as GET with
    no body (the response was created with head_only=True).

    Several instances can sit in one pipeline, one per mount:

        pipeline.use(
            StaticFile("/public", "./public"),
            StaticFile("/assets", "/srv/assets"),
        )

    Args:
        url_root: URL prefix this stage answers for.
        fs_root: Directory files are served from. Must exist.
        index_file: File served for directory URLs.

    Raises:
        ValueError: If fs_root is not an existing directory.
    """

    def __init__(
        self,
        url_root: str,
        fs_root: Union[str, os.PathLike],
        index_file: str = INDEX_FILE,
    ):
        root = Path(fs_root)
        if not root.is_dir():
            raise ValueError(f"Static root directory does not exist: {fs_root}")

        self._url_root = str(_url_prefix(url_root))
        self._fs_root = root.resolve()
        self._index_file = index_file

    @property
    def url_root(self) -> str:
        return self._url_root

    @property
    def fs_root(self) -> Path:
        return self._fs_root

    @property
    def name(self) -> str:
        return f"StaticFile({self._url_root})"

    def __call__(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        context: Any,
    ) -> Outcome:
        if request.method not in SERVED_METHODS:
            return Continue(request, response, context)

        file_path = url_to_file_path(request.target, self._index_file)
        if file_path is None:
            return Continue(request, response, context)

        path = contain(file_path, self._url_root, self._fs_root)
        if path is None:
            if _url_prefix(self._url_root) in file_path.parents:
                logger.debug(f"Refused {request.target!r}: outside static root")
            return Continue(request, response, context)

        if not _is_regular_file(path):
            return Continue(request, response, context)

        logger.debug(f"static path {path.relative_to(self._fs_root)}")

        # An OSError here (file gone since is_file, unreadable) propagates:
        # the server turns it into a 500 for this request only.
        response.send_file(path)
        return TERMINATE

    def __repr__(self) -> str:
        return f"StaticFile(url_root={self._url_root!r}, fs_root={str(self._fs_root)!r})"


def serve_static(url_root: str, fs_root: Union[str, os.PathLike], **kwargs) -> StaticFile:
    """
    Factory for StaticFile.

        server.use(serve_static("/public", "./public"))
    """
    return StaticFile(url_root, fs_root, **kwargs)
