"""Page tokens: a stack of per-resource-type page states serialised to JSON.

The innermost token is a 1-based SCIM ``startIndex``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Optional

RESOURCES_PAGE_SIZE = 50


@dataclass(frozen=True)
class PageState:
    resource_type_id: str = ""
    resource_id: str = ""
    token: str = ""


class Bag:
    """Stack of page states; ``current`` is the top."""

    def __init__(self) -> None:
        self.states: list[PageState] = []
        self.current: Optional[PageState] = None

    def push(self, state: PageState) -> None:
        if self.current is not None:
            self.states.append(self.current)
        self.current = state

    def pop(self) -> Optional[PageState]:
        popped = self.current
        self.current = self.states.pop() if self.states else None
        return popped

    def next(self, token: str) -> None:
        """Replace the current state's token, dropping the state when ``token`` is empty."""
        popped = self.pop()
        if token and popped is not None:
            self.push(PageState(popped.resource_type_id, popped.resource_id, token))

    def next_token(self, token: str) -> str:
        self.next(token)
        return self.marshal()

    @property
    def resource_type_id(self) -> str:
        return self.current.resource_type_id if self.current else ""

    @property
    def page_token(self) -> str:
        return self.current.token if self.current else ""

    def marshal(self) -> str:
        if self.current is None:
            return ""
        return json.dumps(
            {
                "states": [asdict(s) for s in self.states],
                "current_state": asdict(self.current),
            }
        )

    @classmethod
    def unmarshal(cls, text: str) -> "Bag":
        bag = cls()
        if not text:
            return bag
        try:
            data = json.loads(text)
            bag.states = [PageState(**s) for s in data.get("states") or []]
            current = data.get("current_state")
            bag.current = PageState(**current) if current else None
        except (TypeError, AttributeError, json.JSONDecodeError) as exc:
            raise ValueError(f"invalid page token: {text!r}") from exc
        return bag


def parse_page_token(token: str, resource_type_id: str, resource_id: str = "") -> tuple[Bag, int]:
    """Decode ``token``, seeding an initial state; returns ``(bag, start_index)``."""
    bag = Bag.unmarshal(token)
    if bag.current is None:
        bag.push(PageState(resource_type_id=resource_type_id, resource_id=resource_id))
    page = 1
    if bag.page_token:
        try:
            page = int(bag.page_token)
        except ValueError as exc:
            raise ValueError(f"invalid page index: {bag.page_token!r}") from exc
    return bag, page


def prepare_next_token(page: int, count: int, total: int) -> str:
    """Next 1-based start index, or "" once the listing is exhausted."""
    next_index = page + count
    if count <= 0 or next_index > total:
        return ""
    return str(next_index)
