"""
Ingestion — text extraction, chunking, and embedding into the vector store.

This module is responsible for the ETL-like pipeline that converts an
uploaded file into embedded chunks stored in a vector database, reporting
progress stage by stage (see :mod:`docrag.ingestion.upload`).
"""
