"""Logging setup for the CLI and scheduled jobs."""

import logging
from collections.abc import Iterable

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
REDACTED = "***REDACTED***"


class TokenRedactionFilter(logging.Filter):
    """Logging filter that replaces raw credentials with ``***REDACTED***``."""

    def __init__(self, tokens: Iterable[str]) -> None:
        super().__init__()
        self._tokens = [t for t in tokens if t]

    def _redact(self, value: str) -> str:
        for token in self._tokens:
            value = value.replace(token, REDACTED)
        return value

    def _contains(self, value: object) -> bool:
        text = str(value)
        return any(token in text for token in self._tokens)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._tokens:
            return True
        if self._contains(record.msg):
            record.msg = self._redact(str(record.msg))
        if record.args:
            args = record.args
            if isinstance(args, tuple):
                record.args = tuple(self._redact(str(a)) if self._contains(a) else a for a in args)
            elif isinstance(args, dict):
                record.args = {k: self._redact(str(v)) if self._contains(v) else v for k, v in args.items()}
        return True


def setup_logging(verbose: bool = False, secrets: Iterable[str] = ()) -> None:
    """Configure the root logger; every handler redacts *secrets*."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)

    redaction = TokenRedactionFilter(secrets)
    for handler in logging.getLogger().handlers:
        handler.addFilter(redaction)

    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
