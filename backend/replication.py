from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SHARED_FIELDS = (
    "gameState",
    "deck",
    "tableCards",
    "trumpSuit",
    "turn",
    "roundScores",
    "gamePoints",
    "tocoTarget",
    "lives",
    "roundResult",
    "trickFeedback",
)

Subscriber = Callable[[str, Optional[str]], None]


class ReplicatedStore:
    """Mirror of one room's shared fields plus per-player sub-state.

    ``Room`` is the only writer. Subscribers are called with ``(key, None)``
    for shared fields and ``(key, player_id)`` for player sub-state, and only
    when the stored value actually changed.
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._player_state: Dict[str, Dict[str, Any]] = {}
        self._subscribers: List[Subscriber] = []

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            return default
        return copy.deepcopy(self._values[key])

    def set(self, key: str, value: Any) -> bool:
        if key in self._values and self._values[key] == value:
            return False
        self._values[key] = copy.deepcopy(value)
        self._notify(key, None)
        return True

    def get_player_state(self, player_id: str, key: str, default: Any = None) -> Any:
        state = self._player_state.get(player_id, {})
        if key not in state:
            return default
        return copy.deepcopy(state[key])

    def set_player_state(self, player_id: str, key: str, value: Any) -> bool:
        state = self._player_state.setdefault(player_id, {})
        if key in state and state[key] == value:
            return False
        state[key] = copy.deepcopy(value)
        self._notify(key, player_id)
        return True

    def drop_player(self, player_id: str):
        if self._player_state.pop(player_id, None) is not None:
            self._notify("hand", player_id)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, key: str, player_id: Optional[str]):
        for callback in list(self._subscribers):
            try:
                callback(key, player_id)
            except Exception:
                logger.exception("Store subscriber failed for key=%s player=%s", key, player_id)
