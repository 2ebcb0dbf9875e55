"""RAG module for codebase search.

Provides symbol-aware chunking, content fingerprinting, a FAISS-backed
record store, the change-aware ingestion pipeline and the two-stage
retrieve-then-rerank query pipeline.
"""
