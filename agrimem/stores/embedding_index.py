"""
Embedding index: content id -> (text, vector, metadata) with hybrid search.
"""

import re
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..models.core import EmbeddingEntry
from ..utils.config import RetrievalConfig, StoreConfig
from ..utils.config import config as default_config
from ..utils.kv_substrate import KeyValueSubstrate, create_substrate
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_iso

logger = get_logger(__name__)

ENTRY_PARTITION = 'entries'
WILDCARD = 'all'

_TOKEN_RE = re.compile(r'[a-z0-9]+')


def _tokens(text: str) -> set:
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 2}


def is_wildcard(value: Any) -> bool:
    """True for filter or metadata values that match anything."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in ('', WILDCARD)
    if isinstance(value, (list, tuple)):
        return not value or any(is_wildcard(v) for v in value)
    return False


# Fields whose values are names (crops, states); "gram" must not match "green gram"
EXACT_MATCH_FIELDS = ('kind', 'crop_type', 'state')


def _contains_phrase(tokens: List[str], phrase: List[str]) -> bool:
    size = len(phrase)
    return size > 0 and any(tokens[i:i + size] == phrase for i in range(len(tokens) - size + 1))


def _field_matches(field_name: str, wanted: str, actual: Any) -> bool:
    values = actual if isinstance(actual, (list, tuple)) else [actual]
    wanted_tokens = _TOKEN_RE.findall(wanted.lower())
    for value in values:
        value_tokens = _TOKEN_RE.findall(str(value).lower())
        if value_tokens == wanted_tokens:
            return True
        # Descriptive fields such as farmer_type match on whole words ("small" in "small and marginal")
        if field_name not in EXACT_MATCH_FIELDS and (_contains_phrase(value_tokens, wanted_tokens) or
                                                     _contains_phrase(wanted_tokens, value_tokens)):
            return True
    return False


def _kind_prefix(filters: Dict[str, str]) -> str:
    # Entry ids are namespaced by kind (scheme:<uuid>), so a kind filter narrows the partition read
    kind = filters.get('kind')
    return f'{kind.strip().lower()}:' if kind else ''


class EmbeddingIndex:
    """Embedding entries on the key-value substrate with filter + similarity search."""

    def __init__(self,
                 config: StoreConfig,
                 embed_fn: Callable[[str], List[float]],
                 dimension: int,
                 substrate: Optional[KeyValueSubstrate] = None,
                 retrieval_config: Optional[RetrievalConfig] = None):
        """
        Initialize the embedding index.

        Args:
            config: StoreConfig naming the backing table
            embed_fn: External embedding function used for query text
            dimension: Fixed vector length
            substrate: Explicit substrate, built from config if None
            retrieval_config: Score weights, uses default if None
        """
        self.config = config
        self.embed_fn = embed_fn
        self.dimension = dimension
        self.substrate = substrate or create_substrate(config, config.embedding_table)
        self.retrieval_config = retrieval_config or default_config.retrieval

    def upsert(self,
               entry_id: str,
               text: str,
               vector: List[float],
               metadata: Optional[Dict[str, Any]] = None,
               last_updated: Optional[str] = None) -> EmbeddingEntry:
        """
        Write an entry atomically, replacing any previous version.

        Args:
            entry_id: Deterministic content id
            text: Canonical text the vector was computed from
            vector: Embedding of ``text``
            metadata: Searchable structured fields
            last_updated: ISO timestamp, defaults to now

        Returns:
            The stored EmbeddingEntry

        Raises:
            ValueError: If the vector length differs from the index dimension
        """
        if len(vector) != self.dimension:
            raise ValueError(f'Vector for {entry_id} has length {len(vector)}, expected {self.dimension}')

        entry = EmbeddingEntry(id=entry_id,
                               text=text,
                               vector=[float(v) for v in vector],
                               metadata=metadata or {},
                               last_updated=last_updated or now_iso())
        self.substrate.put(
            ENTRY_PARTITION, entry_id, {
                'id': entry.id,
                'text': entry.text,
                'vector': entry.vector,
                'metadata': entry.metadata,
                'last_updated': entry.last_updated
            })
        logger.debug(f'Upserted embedding entry {entry_id}')
        return entry

    def get(self, entry_id: str) -> Optional[EmbeddingEntry]:
        """Return the stored entry for an id, or None."""
        item = self.substrate.get(ENTRY_PARTITION, entry_id)
        return self._to_entry(item) if item else None

    def search(self, query_text: str, filters: Optional[Dict[str, Any]] = None, top_k: int = 5) -> List[Dict[str, Any]]:
        """
        Hybrid search: structured filter pass, then similarity and keyword ranking.

        Filter values equal to ``all`` (or empty) are ignored. An entry whose field is
        missing or ``all`` passes that filter as a wildcard; any other entry value must
        match, else the entry is excluded. Names (kind, crop_type, state) must match
        whole; descriptive fields may match a whole-word phrase. Entries matched by
        concrete values are boosted ahead of wildcard passes. A ``kind`` filter limits
        the read to entries whose id carries that kind prefix.

        Args:
            query_text: Free-text query
            filters: Metadata field -> wanted value
            top_k: Number of results to return

        Returns:
            List of dicts with id, score, similarity, keyword_score, structured_score, entry
        """
        active = {k: str(v) for k, v in (filters or {}).items() if not is_wildcard(v)}

        candidates = []
        for item in self.substrate.query(ENTRY_PARTITION, prefix=_kind_prefix(active)):
            entry = self._to_entry(item)
            explicit = 0
            excluded = False
            for field_name, wanted in active.items():
                actual = entry.metadata.get(field_name)
                if is_wildcard(actual):
                    continue
                if _field_matches(field_name, wanted, actual):
                    explicit += 1
                else:
                    excluded = True
                    break
            if not excluded:
                candidates.append((entry, explicit / len(active) if active else 0.0))

        if not candidates:
            logger.debug(f'Embedding search found no entries passing filters {active}')
            return []

        similarities = self._similarities(query_text, [entry.vector for entry, _ in candidates])
        query_tokens = _tokens(query_text or '')
        cfg = self.retrieval_config

        results = []
        for (entry, structured), similarity in zip(candidates, similarities):
            keyword = len(query_tokens & _tokens(entry.text)) / len(query_tokens) if query_tokens else 0.0
            score = cfg.vector_weight * similarity + cfg.keyword_weight * keyword + cfg.structured_boost * structured
            results.append({
                'id': entry.id,
                'score': score,
                'similarity': similarity,
                'keyword_score': keyword,
                'structured_score': structured,
                'entry': entry
            })

        # Highest score first, most recently updated first on ties
        results.sort(key=lambda r: (r['score'], r['entry'].last_updated), reverse=True)
        logger.debug(f'Embedding search returned {min(top_k, len(results))} of {len(results)} candidates')
        return results[:top_k]

    def _similarities(self, query_text: str, vectors: List[List[float]]) -> List[float]:
        if not query_text or not query_text.strip():
            return [0.0] * len(vectors)

        query = np.asarray(self.embed_fn(query_text), dtype=float)
        matrix = np.asarray(vectors, dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        with np.errstate(divide='ignore', invalid='ignore'):
            cosine = np.where(norms > 0, dots / norms, 0.0)
        return [float(v) for v in cosine]

    @staticmethod
    def _to_entry(item: Dict[str, Any]) -> EmbeddingEntry:
        return EmbeddingEntry(id=item['id'],
                              text=item.get('text', ''),
                              vector=[float(v) for v in item.get('vector', [])],
                              metadata=item.get('metadata') or {},
                              last_updated=item.get('last_updated', ''))
