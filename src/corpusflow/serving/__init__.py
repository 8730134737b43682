"""
Serving — FastAPI application exposing the workflow delivery endpoints and
the namespace search API.
"""
