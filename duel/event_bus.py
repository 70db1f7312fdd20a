from typing import Any, Callable, Dict, List

# Topics raised by the simulation
OUTBOUND = "outbound"      # protocol message to hand to the relay
GAME_ENDED = "game_ended"  # terminal state latched locally


class EventBus:
    """Simple pub/sub event bus between the simulation and its host process."""
    def __init__(self) -> None:
        self._subs: Dict[str, List[Callable[..., None]]] = {}

    def subscribe(self, event: str, cb: Callable[..., None]) -> Callable[[], None]:
        self._subs.setdefault(event, []).append(cb)

        def _unsubscribe() -> None:
            subs = self._subs.get(event, [])
            if cb in subs:
                subs.remove(cb)
        return _unsubscribe

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        # Copy so a callback may unsubscribe itself mid-emit
        for cb in list(self._subs.get(event, [])):
            cb(*args, **kwargs)
