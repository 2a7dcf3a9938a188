"""
Bridges the standard `logging` loggers to the per-client log sink.
"""
import logging
from typing import Callable


class SinkLoggerAdapter(logging.LoggerAdapter):
    """
    Logs through the wrapped logger and hands every message text
    to the client's `log_sink` as well, regardless of level.
    """
    def __init__(self, logger: logging.Logger, sink: Callable[[str], None]):
        super().__init__(logger, {})
        self.sink = sink

    def log(self, level, msg, *args, **kwargs):
        text = msg % args if args else str(msg)
        try:
            self.sink(text)
        except Exception as e:
            self.logger.error(f"Log sink raised: {e}")
        # Attribute the record to our caller, not to this method
        kwargs.setdefault("stacklevel", 2)
        super().log(level, msg, *args, **kwargs)
