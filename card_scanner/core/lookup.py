"""
Lookup orchestration for the card scanner.

Resolves a candidate card name against the catalog: cache probe, then
exact -> fuzzy -> autocomplete suggestions. Owns both cache tiers and,
through the client, the request queue.
"""

from typing import Any, Dict, List, Optional

from .cache import TwoTierCache, JsonFileCacheStore, cache_key
from .catalog import ScryfallClient, CatalogError
from .config import MAX_SUGGESTIONS, CACHE_TTL_MS
from .postprocessing import normalize_card_name, is_valid_card_name
from .utils import LookupResult


ERROR_NAME_TOO_SHORT = "Name too short"
ERROR_NO_EXACT_MATCH = "No exact match found"
ERROR_NOT_FOUND = "Card not found"


class CardLookup:
    """
    Lookup orchestrator.

    Usage:
        lookup = CardLookup()
        result = lookup.lookup("Lighming Bolt")
        if result.success:
            print(result.card["name"], result.match_type)
    """

    def __init__(
        self,
        client: ScryfallClient = None,
        cache: TwoTierCache = None,
        max_suggestions: int = MAX_SUGGESTIONS
    ):
        self.client = client or ScryfallClient()
        self.cache = cache or TwoTierCache(durable=JsonFileCacheStore(), ttl_ms=CACHE_TTL_MS)
        self.max_suggestions = max_suggestions

    def lookup(self, candidate_name: str) -> LookupResult:
        """
        Resolve a candidate name to a card record.

        Not-found outcomes are returned as ``success=False``; catalog errors
        other than not-found raise CatalogError.
        """
        name = normalize_card_name(candidate_name)
        if len(name) < 2 or not is_valid_card_name(name):
            return LookupResult(success=False, error=ERROR_NAME_TOO_SHORT)

        exact_key = cache_key("exact", name)
        fuzzy_key = cache_key("fuzzy", name)

        cached = self.cache.get(exact_key)
        if cached is not None:
            return LookupResult(success=True, card=cached, match_type="exact")
        cached = self.cache.get(fuzzy_key)
        if cached is not None:
            return LookupResult(success=True, card=cached, match_type="fuzzy")

        card = self.client.named_exact(name)
        if card is not None:
            print(f"[Catalog] Exact match: {card.get('name')}")
            self.cache.put(exact_key, card)
            return LookupResult(success=True, card=card, match_type="exact")

        card = self.client.named_fuzzy(name)
        if card is not None:
            print(f"[Catalog] Fuzzy match: {name!r} -> {card.get('name')}")
            self.cache.put(fuzzy_key, card)
            return LookupResult(success=True, card=card, match_type="fuzzy")

        suggestions = self.autocomplete(name)
        if suggestions:
            print(f"[Catalog] No match for {name!r}, {len(suggestions)} suggestions")
            return LookupResult(
                success=False,
                error=ERROR_NO_EXACT_MATCH,
                suggestions=suggestions[:self.max_suggestions],
            )

        print(f"[Catalog] No match for {name!r}")
        return LookupResult(success=False, error=ERROR_NOT_FOUND)

    def lookup_by_id(self, card_id: str) -> Optional[Dict[str, Any]]:
        key = cache_key("id", card_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        card = self.client.card_by_id(card_id)
        if card is not None:
            self.cache.put(key, card)
        return card

    def autocomplete(self, query: str) -> List[str]:
        """Name suggestions for a partial name; errors yield no suggestions."""
        try:
            return self.client.autocomplete(query)
        except CatalogError as e:
            print(f"[Catalog] Autocomplete failed: {e}")
            return []

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self.client.search(query, limit=limit)

    def printings(self, oracle_id: str) -> List[Dict[str, Any]]:
        return self.client.printings(oracle_id)

    def clear_cache(self) -> None:
        self.cache.clear()
        print("[Cache] Cleared")

    def close(self) -> None:
        self.client.close()
