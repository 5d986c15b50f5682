"""Canonical service version constant.

Kept in its own module so the middleware, the health route and the
callback dispatcher's User-Agent can read it without importing the
application factory.
"""

API_VERSION = "1.0.0"
