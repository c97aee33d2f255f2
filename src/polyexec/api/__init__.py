"""
Expose the FastAPI application instance.

Importing this module will create a FastAPI application from the
environment and register all routes.  This makes it easy to run the
service with Uvicorn or Gunicorn, or directly with the ``-m`` invocation:

```sh
python -m polyexec.api
```
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
