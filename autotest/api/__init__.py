"""Autotest HTTP API layer.

This package provides the Falcon Asynchronous Server Gateway Interface
(ASGI) application for the autotest runtime HTTP surface.

Usage
-----
Create and run the application::

    from autotest.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # full mode with event endpoints

Public API
----------
create_app
    Application factory that configures the Falcon ASGI app with health
    endpoints and optionally with event endpoints.
"""

from autotest.api.app import AppDependencies, create_app

__all__ = ["AppDependencies", "create_app"]
