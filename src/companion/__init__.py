"""Retrieval-augmented companion chat backend.

The FastAPI application factory lives in ``companion/server.py``.

Typical usage
-------------
from companion import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

__all__ = ["create_app", "__version__", "get_version"]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application (see :func:`companion.server.create_app`)."""
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
