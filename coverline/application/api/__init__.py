"""
HTTP API: middleware pipeline, request models, dependencies and routes.
"""
