# src/annobroker/adapters/ui.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

log = logging.getLogger(__name__)

RELOAD_PROMPT = (
    "The server is running a different version from the annotation tool than "
    "your client, possibly due to a server upgrade. Would you like to reload "
    "the current page to update your client to the latest version?"
)


class Waiter(Protocol):
    def close(self) -> None: ...


class ReloadPolicy(Protocol):
    def confirm(self, prompt: str) -> bool: ...
    def reload(self) -> None: ...


class NullWaiter:
    def close(self) -> None:
        log.debug("waiter close")


@dataclass
class StaticReloadPolicy:
    """Always gives the same answer; counts reloads instead of performing them."""
    accept: bool = False
    reloads: int = 0
    last_prompt: Optional[str] = None

    def confirm(self, prompt: str) -> bool:
        self.last_prompt = prompt
        return self.accept

    def reload(self) -> None:
        self.reloads += 1
        log.info("reload requested")


class CallbackReloadPolicy:
    def __init__(self, confirm: Callable[[str], bool], reload: Callable[[], None]):
        self._confirm = confirm
        self._reload = reload

    def confirm(self, prompt: str) -> bool:
        return bool(self._confirm(prompt))

    def reload(self) -> None:
        self._reload()
