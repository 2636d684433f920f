"""
Interactive catalog search where the newest query wins.

Each new query cancels the previous one.  A superseded query's results
are discarded instead of being shown over the newer query's results.
"""

import logging
import re
import threading

from .refresh import CancelToken

logger = logging.getLogger(__name__)

_STORE_URL_ID_RE = re.compile(r"/id(\d+)")


class SearchSession:
    def __init__(self, client, limit: int = 25):
        self.client = client
        self.limit = limit
        self._lock = threading.Lock()
        self._generation = 0
        self._token = None

    def _begin(self):
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._generation += 1
            self._token = CancelToken()
            return self._generation, self._token

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def search(self, query: str, country: str = "us") -> list[dict] | None:
        """
        Search by name, or look up an App Store URL's id.

        Returns None when a newer query superseded this one before its
        results arrived.  Client errors propagate to the caller.
        """
        generation, token = self._begin()
        query = (query or "").strip()
        if len(query) < 2:
            return []

        url_match = _STORE_URL_ID_RE.search(query)
        if url_match:
            entry = self.client.lookup_by_id(int(url_match.group(1)), country=country)
            results = [entry] if entry else []
        else:
            results = self.client.search_apps(query, country=country, limit=self.limit)

        if token.cancelled or not self._is_current(generation):
            logger.debug(f"Discarding superseded search results for '{query}'.")
            return None
        return results
