"""dionysius: dionysius/__init__.py."""

from pathlib import Path


__version__ = "0.3.0"


def encode_path_for_name(path: Path) -> str:
    """Replace '/' with '_' and remove leading slash"""
    return str(path).strip("/").replace("/", "_") or "root"
