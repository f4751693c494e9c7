"""
=============================================================================
HANDLERS MODULE
=============================================================================

Built-in stages that answer requests.

    StaticFile          serve files under one URL prefix from one directory
    url_to_file_path    request target → decoded, dot-free URL path
    contain             URL path → file inside the root, or None

=============================================================================
"""

from .static import StaticFile, serve_static, url_to_file_path, contain, INDEX_FILE

__all__ = [
    "StaticFile",
    "serve_static",
    "url_to_file_path",
    "contain",
    "INDEX_FILE",
]
