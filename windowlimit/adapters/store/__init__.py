"""Script store adapters.

The rate limiter only depends on ``AbstractScriptStore``; Redis and the
in-memory store are interchangeable behind it.
"""
