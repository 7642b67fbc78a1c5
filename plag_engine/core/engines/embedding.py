"""Embedding engine: cosine similarity of file embeddings from an OpenAI-compatible API."""

import hashlib
import threading
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import tiktoken
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential, RetryError

from ..config import Config
from ..errors import EngineError
from ..files import read_text
from ..log import base_logger
from .base import SimilarityEngine

logger = base_logger.getChild('engines.embedding')


class EmbeddingCache:
    """Simple in-memory cache for embeddings, keyed by content hash."""

    def __init__(self, max_size: int = 10000):
        """Initialize the cache with a maximum size."""
        self.cache: Dict[str, np.ndarray] = {}
        self.max_size = max_size
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[np.ndarray]:
        """Get an embedding from the cache."""
        with self._lock:
            return self.cache.get(key)

    def put(self, key: str, value: np.ndarray):
        """Put an embedding into the cache."""
        with self._lock:
            if len(self.cache) >= self.max_size:
                # Simple FIFO eviction
                first_key = next(iter(self.cache))
                del self.cache[first_key]
            self.cache[key] = value


class EmbeddingEngine(SimilarityEngine):
    """Scores two files by the cosine similarity of their embeddings."""

    name = "embedding"

    def __init__(self, config: Config, client: Optional[OpenAI] = None):
        """
        Initialize the embedding engine.

        Args:
            config: Configuration object with API settings
            client: Pre-built API client (built from config when omitted)
        """
        self.config = config
        self.model = config.openai_model
        self.version = config.openai_model
        self.max_tokens = config.embedding_max_tokens
        self.cache = EmbeddingCache()
        self._client = client
        self._encoding = None

        api_key_display = ('***' + config.openai_api_key[-4:]
                           if len(config.openai_api_key) > 4
                           else '***')
        logger.info(f"Embedding engine using {config.openai_base_url} (model: {self.model}, key: {api_key_display})")

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.config.openai_api_key,
                base_url=self.config.openai_base_url
            )
        return self._client

    @property
    def encoding(self):
        if self._encoding is None:
            try:
                self._encoding = tiktoken.encoding_for_model(self.model)
            except KeyError:
                # Fallback to cl100k_base for unknown models
                logger.warning(f"Unknown model {self.model}, using cl100k_base encoding")
                self._encoding = tiktoken.get_encoding("cl100k_base")
        return self._encoding

    def truncate(self, text: str) -> str:
        """Cut text down to the model's token budget."""
        tokens = self.encoding.encode(text)
        if len(tokens) <= self.max_tokens:
            return text
        logger.debug(f"Truncating text from {len(tokens)} to {self.max_tokens} tokens")
        return self.encoding.decode(tokens[:self.max_tokens])

    def embed_text(self, text: str) -> np.ndarray:
        """Embedding of one text, served from the cache when possible."""
        cache_key = f"{self.model}:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        retried_call = retry(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10)
        )(self._call_api)

        try:
            embedding = retried_call(self.truncate(text) or " ")
        except RetryError as ex:
            raise EngineError(
                f"Failed to generate embeddings after {self.config.max_retries} attempts: {ex.last_attempt.exception()}",
                engine=self.name,
            ) from ex

        self.cache.put(cache_key, embedding)
        return embedding

    def _call_api(self, text: str) -> np.ndarray:
        response = self.client.embeddings.create(model=self.model, input=[text])
        return np.array(response.data[0].embedding, dtype=np.float32)

    def compute_score(self, path_a: Path, path_b: Path) -> float:
        emb_a = self.embed_text(read_text(path_a))
        emb_b = self.embed_text(read_text(path_b))

        norm = float(np.linalg.norm(emb_a) * np.linalg.norm(emb_b))
        if norm == 0.0:
            raise EngineError("Received an all-zero embedding", engine=self.name)

        return float(np.dot(emb_a, emb_b) / norm)
