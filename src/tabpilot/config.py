"""
Configuration and logging setup for tabpilot.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

logger = logging.getLogger("tabpilot")

MODE_CDP = "cdp"
MODE_DOM = "dom"
VALID_MODES = frozenset({MODE_CDP, MODE_DOM})


def setup_logging(level: int = logging.INFO, debug: bool = False):
    """Configure logging for tabpilot."""
    if debug:
        level = logging.DEBUG
    
    logger.setLevel(level)
    
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class ActionTimings:
    """Settle delays (seconds) used between input steps of locator actions."""
    
    click_hold: float = 0.05
    click_interval: float = 0.05
    focus_settle: float = 0.3
    select_all_settle: float = 0.5
    insert_settle: float = 0.3
    post_action: float = 0.1
    
    @classmethod
    def instant(cls) -> ActionTimings:
        """All delays zeroed, for tests and scripted runs."""
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass
class AutomationConfig:
    """Configuration options for the automation engine."""
    
    host: str = "localhost"
    port: int = 9222
    command_timeout: float = 10.0
    action_timeout: float = 30.0
    idle_detach_timeout: float = 30.0
    overlay_settle_delay: float = 0.2
    overlay_frame_prefixes: Tuple[str, ...] = ("chrome-extension://",)
    lookup_concurrency: int = 50
    node_id_attribute: str = "data-tabpilot-nodeid"
    highlight_attribute: str = "data-tabpilot-highlighted"
    highlight: bool = True
    default_mode: str = MODE_CDP
    timings: ActionTimings = field(default_factory=ActionTimings)
    debug: bool = False
    
    def __post_init__(self):
        if self.default_mode not in VALID_MODES:
            raise ValueError(f"Unknown snapshot mode: {self.default_mode!r}")
        if self.lookup_concurrency < 1:
            raise ValueError("lookup_concurrency must be at least 1")
    
    @classmethod
    def from_env(cls, prefix: str = "TABPILOT_") -> AutomationConfig:
        """
        Build a config from environment variables.
        
        Recognised: HOST, PORT, COMMAND_TIMEOUT, ACTION_TIMEOUT,
        IDLE_DETACH_TIMEOUT, MODE, HIGHLIGHT, DEBUG (all prefixed).
        """
        config = cls()
        
        def _get(name: str) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}")
        
        if _get("HOST"):
            config.host = _get("HOST")
        if _get("PORT"):
            config.port = int(_get("PORT"))
        if _get("COMMAND_TIMEOUT"):
            config.command_timeout = float(_get("COMMAND_TIMEOUT"))
        if _get("ACTION_TIMEOUT"):
            config.action_timeout = float(_get("ACTION_TIMEOUT"))
        if _get("IDLE_DETACH_TIMEOUT"):
            config.idle_detach_timeout = float(_get("IDLE_DETACH_TIMEOUT"))
        if _get("MODE"):
            mode = _get("MODE").lower()
            if mode not in VALID_MODES:
                raise ValueError(f"Unknown snapshot mode: {mode!r}")
            config.default_mode = mode
        if _get("HIGHLIGHT"):
            config.highlight = _get("HIGHLIGHT").lower() in ("1", "true", "yes")
        if _get("DEBUG"):
            config.debug = _get("DEBUG").lower() in ("1", "true", "yes")
        return config
