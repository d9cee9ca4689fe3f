"""
Lecture Knowledge Base - extract, index and query knowledge from course material.

Modules:
    - schemas: Pydantic models for records, entries and reports
    - extract: LLM-based knowledge extraction from transcripts and notes
    - llm: Embedding and text-generation client
    - store: LanceDB knowledge store with cosine search
    - ingest: Indexing pipeline and CLI
    - query: Query pipeline, answer synthesis and CLI
    - serve: HTTP API
"""

__version__ = "0.1.0"
