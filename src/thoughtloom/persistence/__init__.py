"""File persistence helpers."""

from .atomic import (
    dump_diagnostic,
    flush_handle,
    locked_path,
    remove_file,
    replace_file,
    write_text_atomic,
)

__all__ = [
    "dump_diagnostic",
    "flush_handle",
    "locked_path",
    "remove_file",
    "replace_file",
    "write_text_atomic",
]
