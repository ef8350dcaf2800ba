"""Fallible-operation wrapper used at component boundaries.

Operations that must never raise into their caller (the command channel and
the lifecycle tracker) run through a :class:`Guard`. The guard logs the
failure once, with traceback, and hands back an :class:`Outcome` carrying
either the value or the error together with a safe default.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class Outcome:
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Guard:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('queuewatch')

    def call(self, description: str, operation: Callable[..., Any], *args,
             default: Any = None, **kwargs) -> Outcome:
        try:
            return Outcome(value=operation(*args, **kwargs))
        except Exception as e:
            self.logger.error(f"{description} failed: {e}", exc_info=True)
            return Outcome(value=default, error=e)
