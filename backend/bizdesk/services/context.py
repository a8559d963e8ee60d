# Overview: Explicit per-caller context passed to every ledger operation.

from __future__ import annotations

from dataclasses import dataclass

from flask import g


@dataclass(frozen=True)
class LedgerContext:
    """
    Who is acting, and on which business's books.

    Built per request by @require_auth (or directly by tests/CLI); nothing
    in the service layer reads tenant state from globals.
    """
    business_id: int
    user_id: int | None = None

    @classmethod
    def from_request(cls) -> "LedgerContext":
        return g.ledger_context
