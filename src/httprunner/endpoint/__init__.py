"""HTTP endpoint for httprunner.

Exposes the run, list, kill and die operations over FastAPI, with
optional Basic authentication.
"""
