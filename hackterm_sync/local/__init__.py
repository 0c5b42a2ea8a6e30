"""
Local file helpers.

Atomic JSON and text writes used by the credential cache.
"""

from .file_ops import (
    ensure_directory,
    read_json,
    read_text,
    remove_file,
    write_json_atomic,
    write_text_atomic,
)

__all__ = [
    "ensure_directory",
    "read_json",
    "read_text",
    "remove_file",
    "write_json_atomic",
    "write_text_atomic",
]
