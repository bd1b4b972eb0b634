"""Response parameter defaults for generation calls."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..conversations.models import Channel


class ResponseParameterStore:
    """Maintain per-channel sampling defaults.

    SMS replies are truncated before sending anyway, so the model is asked for
    fewer tokens there; web replies are streamed and can run longer.
    """

    _DEFAULTS: Mapping[Channel, dict[str, Any]] = {
        Channel.WEB: {"temperature": 0.7, "max_tokens": 1024},
        Channel.SMS: {"temperature": 0.5, "max_tokens": 160},
        Channel.WHATSAPP: {"temperature": 0.6, "max_tokens": 512},
    }

    def __init__(self, overrides: Mapping[Channel, Mapping[str, Any]] | None = None):
        self._defaults: dict[Channel, dict[str, Any]] = {
            channel: dict(params) for channel, params in self._DEFAULTS.items()
        }
        if overrides:
            for channel, params in overrides.items():
                self._defaults.setdefault(Channel(channel), {}).update(params)

    def defaults_for_channel(self, channel: Channel | str | None) -> dict[str, Any]:
        if channel is None:
            return {"temperature": 0.7}
        return dict(self._defaults.get(Channel(channel), {"temperature": 0.7}))

    def merge(
        self, channel: Channel | str | None, *overrides: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        """Merge overrides on top of the channel defaults."""

        params = self.defaults_for_channel(channel)
        for override in overrides:
            if override:
                params.update(override)
        return params
