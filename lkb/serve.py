"""
FastAPI server for knowledge retrieval and answers.

Endpoints:
    GET  /health                      - Health check
    POST /search                      - Semantic search
    POST /answer                      - Retrieve and synthesize answers
    GET  /collections                 - List collections
    GET  /collections/{name}/stats    - Collection statistics

Usage:
    lkb-serve --config ./config.yaml
    LKB_CONFIG=./config.yaml uvicorn lkb.serve:app --reload
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from lkb.config import Settings, load_config
from lkb.errors import (
    CollectionNotFound,
    ConfigurationError,
    EmbeddingFailure,
    KnowledgeError,
    StoreUnavailable,
)
from lkb.query import QueryPipeline, create_query_pipeline
from lkb.schemas import Answer, SearchResult

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Lecture Knowledge API",
    description="Retrieval and answer API for knowledge extracted from lectures and notes",
    version="0.1.0",
)

# config.yaml path read by get_pipeline(); main() exports it so reload workers inherit it
CONFIG_ENV = "LKB_CONFIG"

# Global pipeline (initialized on first request)
_pipeline: QueryPipeline | None = None
_collection: str | None = None


def get_pipeline() -> QueryPipeline:
    """Get the global query pipeline."""
    global _pipeline, _collection
    if _pipeline is None:
        config = load_config(os.environ.get(CONFIG_ENV))
        _collection = config["store"]["collection"]
        _pipeline = create_query_pipeline(config, Settings.from_env())
    return _pipeline


def set_pipeline(pipeline: QueryPipeline | None, collection: str | None = None) -> None:
    """Install a pipeline (tests, embedding the app elsewhere)."""
    global _pipeline, _collection
    _pipeline = pipeline
    _collection = collection


def default_collection() -> str:
    get_pipeline()
    return _collection or "knowledge"


# Request/Response models
class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Search query text")
    collection: str | None = Field(default=None, description="Collection (default: from config)")
    limit: int = Field(default=5, ge=1, le=100, description="Maximum number of results")
    min_relevance_score: float = Field(default=0.7, ge=0.0, le=1.0, description="Relevance floor")


class SearchResponse(BaseModel):
    results: list[SearchResult]
    query: str
    total: int


class AnswerResponse(BaseModel):
    answers: list[Answer]
    question: str
    found: bool = Field(description="False when no entry met the relevance threshold")


class StatsResponse(BaseModel):
    collection: str
    entries: int
    dimension: int


def _http_error(e: KnowledgeError) -> HTTPException:
    if isinstance(e, CollectionNotFound):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, (ConfigurationError, StoreUnavailable, EmbeddingFailure)):
        return HTTPException(status_code=503, detail=e.message)
    return HTTPException(status_code=502, detail=e.message)


# Endpoints
@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.post("/search", response_model=SearchResponse)
def search(request: SearchRequest):
    """
    Search for entries by semantic similarity.

    Returns entries ranked by relevance, above the requested floor.
    """
    try:
        pipeline = get_pipeline()
        collection = request.collection or default_collection()
        results = pipeline.store.search(
            collection,
            request.query,
            limit=request.limit,
            min_relevance_score=request.min_relevance_score,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except KnowledgeError as e:
        raise _http_error(e)

    return SearchResponse(results=results, query=request.query, total=len(results))


@app.post("/answer", response_model=AnswerResponse)
def answer(request: SearchRequest):
    """
    Answer a question from the best matching entries.

    An empty answer list with ``found: false`` is not an error.
    """
    try:
        pipeline = get_pipeline()
        collection = request.collection or default_collection()
        answers = list(
            pipeline.iter_answers(
                collection,
                request.query,
                limit=request.limit,
                min_relevance_score=request.min_relevance_score,
            )
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except KnowledgeError as e:
        raise _http_error(e)

    return AnswerResponse(answers=answers, question=request.query, found=bool(answers))


@app.get("/collections", response_model=list[str])
def list_collections():
    try:
        return get_pipeline().store.collections()
    except KnowledgeError as e:
        raise _http_error(e)


@app.get("/collections/{name}/stats", response_model=StatsResponse)
def collection_stats(name: str):
    """
    Get collection statistics.
    """
    try:
        store = get_pipeline().store
        return StatsResponse(
            collection=name,
            entries=store.count(name),
            dimension=store.dimension_of(name),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except KnowledgeError as e:
        raise _http_error(e)


def main():
    parser = argparse.ArgumentParser(description="Serve knowledge search and answers over HTTP")
    parser.add_argument("--host", default=None, help="Bind address (default: server.host)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: server.port)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    config = load_config(args.config)
    if args.config is not None:
        os.environ[CONFIG_ENV] = str(args.config.resolve())
    bind = {
        "host": args.host or config["server"].get("host", "127.0.0.1"),
        "port": args.port or config["server"].get("port", 8000),
    }

    # Fail fast on missing credentials
    Settings.from_env()

    logger.info(f"Serving {config['store']['collection']} on http://{bind['host']}:{bind['port']} (docs at /docs)")
    uvicorn.run("lkb.serve:app", reload=args.reload, log_level=args.log_level, **bind)


if __name__ == "__main__":
    main()
