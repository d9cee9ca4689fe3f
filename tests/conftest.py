"""Shared fakes and fixtures: deterministic providers, temp stores."""

import hashlib
import json
import re
import threading

import pytest

from lkb.errors import ProviderUnavailable
from lkb.llm import EmbeddingProvider, TextGenerator
from lkb.store import KnowledgeStore

DIM = 256


class HashEmbedder(EmbeddingProvider):
    """Bag-of-words embedding: each word adds 1.0 at a stable hashed index."""

    def __init__(self, dimension=DIM, fail_on=()):
        self.dimension = dimension
        self.fail_on = set(fail_on)
        self.calls = []
        self._lock = threading.Lock()

    def embed(self, text):
        with self._lock:
            self.calls.append(text)
        if text in self.fail_on:
            raise ProviderUnavailable("embedding service down")
        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            idx = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[idx] += 1.0
        return vector


class MappingEmbedder(EmbeddingProvider):
    """Returns fixed vectors for known texts."""

    def __init__(self, vectors):
        self.vectors = vectors

    def embed(self, text):
        return list(self.vectors[text])


class FakeGenerator(TextGenerator):
    """
    Scripted text generation.

    ``responses`` maps template id to a string, an exception, or a callable
    ``(input, **variables) -> str``.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self._lock = threading.Lock()

    def generate(self, template_id, input, **variables):
        with self._lock:
            self.calls.append((template_id, input, variables))
        response = self.responses[template_id]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(input, **variables)
        return response


def records_json(*pairs):
    return json.dumps([{"topic": t, "content": c} for t, c in pairs])


LECTURE_TOPICS = [
    ("Photosynthesis", "plants convert sunlight water and carbon dioxide into glucose and oxygen inside chloroplasts"),
    ("Backpropagation", "neural networks compute gradients of the loss layer by layer using the chain rule"),
    ("Supply curves", "markets raise quantity offered when prices increase because producers earn higher margins"),
]


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def store(tmp_path, embedder):
    return KnowledgeStore(str(tmp_path / "vectordb"), embedder=embedder, dimension=DIM)
