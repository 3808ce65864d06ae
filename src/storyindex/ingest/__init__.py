"""Ingestion pipeline: canonical text, identity, quality, chunks, embeddings, persistence."""
