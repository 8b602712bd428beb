"""
Plant Link
==========

The narrow interface between the tuner and the robot: fire-and-forget
commands out, typed messages in. Transports (BLE, serial, the simulated
plant) subclass PlantLink and call ``notify`` for every parsed message.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable, Dict, List

from .gains import GainTriple, LoopSelector


logger = logging.getLogger(__name__)

WILDCARD = '*'

Handler = Callable[..., None]


class PlantLink(ABC):
    """Message dispatch shared by every transport."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    @abstractmethod
    def send_command(self, type: str, payload: dict) -> None:
        """Send a message to the plant without waiting for a reply."""

    def on(self, type: str, handler: Handler) -> None:
        """
        Subscribe to a message type.

        Handlers for ``'*'`` are called as ``handler(type, data)``, all
        others as ``handler(data)``.
        """
        self._handlers[type].append(handler)

    def off(self, type: str, handler: Handler) -> None:
        handlers = self._handlers.get(type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def notify(self, type: str, data: dict) -> None:
        # Copy so handlers may unsubscribe while being dispatched.
        for handler in list(self._handlers.get(type, ())):
            try:
                handler(data)
            except Exception:
                logger.exception("Error in message handler for %s", type)

        for handler in list(self._handlers.get(WILDCARD, ())):
            try:
                handler(type, data)
            except Exception:
                logger.exception("Error in wildcard message handler")

    def handler_count(self, type: str) -> int:
        return len(self._handlers.get(type, ()))

    def apply_gains(self, gains: GainTriple, loop: LoopSelector = LoopSelector.BALANCE) -> None:
        """Send the three set_param commands for one loop."""
        kp_key, ki_key, kd_key = loop.param_keys
        self.send_command('set_param', {'key': kp_key, 'value': gains.kp})
        self.send_command('set_param', {'key': ki_key, 'value': gains.ki})
        self.send_command('set_param', {'key': kd_key, 'value': gains.kd})
