"""Trigger that feeds messages from named engine channels to handlers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

OV_DATA = "data"


class _Handler(Protocol):
    settings: Mapping[str, Any]

    def handle(self, data: Any) -> Any: ...


class _Channel(Protocol):
    def register_callback(self, callback: Callable[[Any], None]) -> None: ...


@dataclass
class HandlerSettings:
    """Per-handler settings: the engine channel to listen on."""

    channel: str

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> HandlerSettings:
        channel = values.get("channel")
        if channel is None or channel == "":
            raise ValueError("required setting 'channel' is missing")
        return cls(channel=str(channel))


@dataclass
class Output:
    """The data pulled from the channel."""

    data: Any = None

    def to_map(self) -> dict[str, Any]:
        return {OV_DATA: self.data}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Output:
        return cls(data=values.get(OV_DATA))


class Listener:
    """Passes each channel message on to a handler."""

    def __init__(self, handler: _Handler) -> None:
        self.handler = handler

    def on_message(self, msg: Any) -> None:
        try:
            self.handler.handle({OV_DATA: msg})
        except Exception:
            logger.exception("handler failed for channel message")


class Trigger:
    """Registers a listener on the channel named by each handler."""

    def __init__(self, config: Any = None) -> None:
        self.config = config
        self.listeners: list[Listener] = []
        self.running = False

    def initialize(
        self, handlers: Iterable[_Handler], channels: Mapping[str, _Channel]
    ) -> None:
        for handler in handlers:
            settings = HandlerSettings.from_dict(handler.settings)
            channel = channels.get(settings.channel)
            if channel is None:
                raise LookupError(f"unknown engine channel '{settings.channel}'")
            listener = Listener(handler)
            channel.register_callback(listener.on_message)
            self.listeners.append(listener)

    def start(self) -> None:
        """Mark the trigger running; channels push messages to the listeners."""
        self.running = True
        logger.debug("channel trigger started with %d listener(s)", len(self.listeners))

    def stop(self) -> None:
        """Mark the trigger stopped; the channels own their delivery."""
        self.running = False
        logger.debug("channel trigger stopped")