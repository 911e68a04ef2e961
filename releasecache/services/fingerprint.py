"""Deterministic cache keys for search queries.

The key is a SHA-256 over a canonical JSON rendering of the query, so it is
stable across restarts and platforms. A missing search term and an empty one
are the same query and must share a key.
"""

import hashlib
import json

from releasecache.schemas import SearchQuery


def canonical_query(query: SearchQuery) -> str:
    """Render the query as compact JSON with sorted keys."""
    data = query.model_dump(mode="json")
    if data["search_term"] is None:
        data["search_term"] = ""
    data["categories"] = sorted(set(data["categories"]))
    return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def query_hash(query: SearchQuery) -> str:
    """64 hex chars identifying a semantically distinct query."""
    return hashlib.sha256(canonical_query(query).encode("utf-8")).hexdigest()
