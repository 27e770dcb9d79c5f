"""
7TV GraphQL API Client

Fetches emote sets and adds emotes to them. Every request passes through
the shared RateLimiter; mutations wait an extra fixed delay on top of it.
"""

import json
import logging
import time
from typing import Any, Callable

import requests

from core.models import ApiError, Collection, Item, NotFoundError, RateLimitedError
from core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

API_URL = "https://api.7tv.app/v4/gql"

FETCH_EMOTE_SET_QUERY = """
query GetEmoteSet($id: String!) {
  emoteSets {
    emoteSet(id: $id) {
      id
      name
      emotes {
        items {
          id
          alias
          emote {
            id
            defaultName
          }
        }
      }
    }
  }
}
"""

ADD_EMOTE_MUTATION = """
mutation AddEmote($setId: String!, $emoteId: String!, $alias: String) {
  emoteSets {
    emoteSet(id: $setId) {
      addEmote(id: { emoteId: $emoteId, alias: $alias }, overrideConflicts: true) {
        id
        name
      }
    }
  }
}
"""

_RATE_LIMIT_MARKERS = ("rate", "limit")


def map_api_error(status_code: int, message: str) -> ApiError:
    """Classify a failed call; throttling becomes RateLimitedError."""
    lowered = message.lower()
    if status_code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return RateLimitedError(status_code, message)
    return ApiError(status_code, message)


class SevenTVClient:
    """7TV GraphQL client bound to one rate limiter."""

    def __init__(self, rate_limiter: RateLimiter, mutation_delay_ms: int = 1000,
                 api_url: str = API_URL, timeout: float = 30,
                 session: requests.Session | None = None,
                 sleep: Callable[[float], None] = time.sleep):
        self._limiter = rate_limiter
        self._mutation_delay = mutation_delay_ms / 1000
        self._api_url = api_url
        self._timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep

    def _graphql_request(self, query: str, variables: dict, token: str,
                         is_mutation: bool = False) -> dict:
        self._limiter.acquire()

        if is_mutation and self._mutation_delay > 0:
            self._sleep(self._mutation_delay)

        try:
            response = self._session.post(
                self._api_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                json={"query": query, "variables": variables},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise ApiError(0, f"Network error: {e}") from e

        if not response.ok:
            logger.error(f"GraphQL error {response.status_code}: {response.text[:200]}")
            raise map_api_error(response.status_code, f"HTTP error: {response.status_code} {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(response.status_code, f"Invalid JSON response: {e}") from e

        if not isinstance(payload, dict):
            raise ApiError(response.status_code, "Unexpected response shape")

        errors = payload.get("errors")
        if errors:
            raise map_api_error(response.status_code, f"GraphQL error: {json.dumps(errors)}")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise ApiError(response.status_code, "Unexpected response shape")
        return data

    def fetch_collection(self, collection_id: str, token: str) -> Collection:
        """Fetch an emote set with all of its emotes."""
        data = self._graphql_request(FETCH_EMOTE_SET_QUERY, {"id": collection_id}, token)

        emote_sets = data.get("emoteSets")
        if emote_sets is not None and not isinstance(emote_sets, dict):
            raise ApiError(200, "Unexpected response shape: emoteSets")
        emote_set = (emote_sets or {}).get("emoteSet")
        if not emote_set:
            raise NotFoundError(f"Emote set not found: {collection_id}")
        if not isinstance(emote_set, dict):
            raise ApiError(200, "Unexpected response shape: emoteSet")

        emotes = emote_set.get("emotes") or {}
        raw_items = emotes.get("items") if isinstance(emotes, dict) else None
        if raw_items is None:
            raw_items = []
        if not isinstance(raw_items, list):
            raise ApiError(200, "Unexpected response shape: emotes")

        items = tuple(item for item in (self._extract_item(raw) for raw in raw_items) if item)
        if len(items) != len(raw_items):
            logger.warning(f"Skipped {len(raw_items) - len(items)} malformed emotes in {collection_id}")

        collection = Collection(
            id=str(emote_set.get("id") or collection_id),
            name=str(emote_set.get("name") or ""),
            items=items,
        )
        logger.info(f"Retrieved {len(items)} emotes from set '{collection.name}'")
        return collection

    def _extract_item(self, raw: Any) -> Item | None:
        if not isinstance(raw, dict):
            return None
        emote = raw.get("emote")
        if not isinstance(emote, dict):
            return None
        alias = raw.get("alias")
        media_id = emote.get("id")
        if not alias or not media_id:
            return None
        return Item(
            id=str(raw.get("id") or media_id),
            alias=str(alias),
            media_id=str(media_id),
            media_name=str(emote.get("defaultName") or ""),
        )

    def add_item(self, collection_id: str, media_id: str, alias: str, token: str) -> None:
        """Add an emote to a set under the given alias."""
        self._graphql_request(
            ADD_EMOTE_MUTATION,
            {"setId": collection_id, "emoteId": media_id, "alias": alias},
            token,
            is_mutation=True,
        )
        logger.debug(f"Added: {alias}")
