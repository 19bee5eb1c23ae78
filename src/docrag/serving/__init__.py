"""
Serving — FastAPI application for the RAG service.

This module exposes document upload, querying and document management
over HTTP, with server-sent events for the streaming endpoints.
"""
