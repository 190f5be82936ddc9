"""
Lightweight in-memory quote store.

Keeps created quotes for ``GET /api/v1/quotes/{quote_id}``. It is NOT a
persistence layer: everything is lost on restart.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from quotes_aggregator.integrations.contracts.quotes import Quote


class InMemoryQuoteStore:
    def __init__(self) -> None:
        self._quotes: Dict[str, Quote] = {}
        self._lock = threading.Lock()

    def put(self, quote: Quote) -> Quote:
        with self._lock:
            self._quotes[quote.quote_id] = quote
        return quote

    def get(self, quote_id: str) -> Optional[Quote]:
        return self._quotes.get(str(quote_id))

    def delete(self, quote_id: str) -> None:
        with self._lock:
            self._quotes.pop(str(quote_id), None)

    def __len__(self) -> int:
        return len(self._quotes)
