"""
Conduit backend package.

Users and tags are persisted as JSON documents behind a small document
store abstraction, with a FastAPI application on top.
"""
