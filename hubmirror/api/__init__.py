"""hubmirror HTTP API layer.

This package provides the Falcon Asynchronous Server Gateway Interface
(ASGI) application that receives GitHub webhooks.

Usage
-----
Create and run the application::

    from hubmirror.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # full mode with webhook endpoints

"""

from hubmirror.api.app import AppDependencies, create_app

__all__ = ["AppDependencies", "create_app"]
