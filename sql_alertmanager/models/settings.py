"""Configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Settings:
    """Process settings for sql_alertmanager."""

    CONFIG_PATH: str
    STATE_PATH: str
    ALERTMANAGER_HOST: str
    ALERTMANAGER_PATH: str
    ALERTMANAGER_SCHEME: str
    MAX_REQUEST_TIMEOUT_S: float
    DEBUG: bool
