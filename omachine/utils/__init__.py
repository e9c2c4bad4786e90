"""Support module containing common utilities"""
from __future__ import annotations

from . import _ui_log, ui


def init_ui(verbosity_level: int = ui.NOTICE, verbose: bool = False) -> None:
    """Install the log UI as the library-wide instance"""

    instance = _ui_log.LogUI(verbosity_level)
    instance.verbose = verbose
    ui.instance(instance)
