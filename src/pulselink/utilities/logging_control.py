"""Sampling for log statements emitted on hot paths such as BLE notifications."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from functools import cache
from typing import Callable, Sequence

LOG_RULES_ENV_VAR = "PULSELINK_LOG_RULES"
DEFAULT_INTERVAL_ENV_VAR = "PULSELINK_LOG_DEFAULT_INTERVAL"
DEFAULT_FALLBACK_LEVEL = logging.DEBUG
DEFAULT_INTERVAL_SECONDS = 1.0

_RULE_PATTERN = re.compile(
    r"^(?P<key>[^=]+)="
    r"(?P<interval>none|\d+(?:\.\d+)?)"
    r"(?::(?P<level>[A-Za-z]+))?"
    r"(?::(?P<fallback>[A-Za-z]+|none))?$"
)


@dataclass(frozen=True)
class LogRule:
    """How often a keyed log statement may be emitted at its primary level."""

    interval_seconds: float | None
    level: int | None = None
    fallback_level: int | None = DEFAULT_FALLBACK_LEVEL

    @classmethod
    def parse(cls, chunk: str) -> tuple[str, LogRule]:
        match = _RULE_PATTERN.match(chunk)
        if not match:
            raise ValueError(
                f"Invalid {LOG_RULES_ENV_VAR} entry {chunk!r}. "
                "Expected 'key=interval[:LEVEL[:FALLBACK]]'."
            )
        fallback_raw = match.group("fallback")
        if fallback_raw is None or fallback_raw.lower() == "none":
            fallback_level = None
        else:
            fallback_level = _parse_level(fallback_raw)
        rule = cls(
            interval_seconds=_parse_interval(match.group("interval")),
            level=_parse_level(match.group("level")),
            fallback_level=fallback_level,
        )
        return match.group("key").strip(), rule


class LoggingController:
    """Throttle keyed log statements, demoting suppressed ones to a fallback level."""

    def __init__(
        self,
        *,
        default_interval: float | None,
        default_fallback_level: int | None,
        rules: dict[str, LogRule],
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_rule = LogRule(
            interval_seconds=default_interval,
            fallback_level=default_fallback_level,
        )
        self._rules = rules
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._next_emit: dict[str, float] = {}

    def rule_for(self, key: str) -> LogRule:
        return self._rules.get(key, self._default_rule)

    def log(
        self,
        *,
        key: str,
        logger: logging.Logger,
        level: int,
        msg: str,
        args: Sequence[object] | None = None,
        fallback_level: int | None = None,
    ) -> bool:
        """Log ``msg`` under ``key`` honouring the sampling rule for that key.

        Returns ``True`` when the statement went out at its primary level.
        """

        rule = self.rule_for(key)
        primary_level = rule.level or level
        suppressed_level = (
            rule.fallback_level if rule.fallback_level is not None else fallback_level
        )

        if rule.interval_seconds is None or self._claim_slot(key, rule.interval_seconds):
            logger.log(primary_level, msg, *(args or ()))
            return True

        if suppressed_level is not None:
            logger.log(suppressed_level, msg, *(args or ()))
        return False

    def _claim_slot(self, key: str, interval: float) -> bool:
        now = self._monotonic()
        with self._lock:
            if now < self._next_emit.get(key, 0.0):
                return False
            self._next_emit[key] = now + interval
            return True


def _parse_level(name: str | None) -> int | None:
    if not name:
        return None
    resolved = getattr(logging, name.upper(), None)
    if isinstance(resolved, int):
        return resolved
    raise ValueError(f"Unknown log level {name!r}")


def _parse_interval(value: str) -> float | None:
    if value.lower() == "none":
        return None
    return float(value)


def parse_rules(raw_rules: str) -> dict[str, LogRule]:
    rules: dict[str, LogRule] = {}
    for chunk in filter(None, (part.strip() for part in raw_rules.split(","))):
        key, rule = LogRule.parse(chunk)
        rules[key] = rule
    return rules


@cache
def get_logging_controller() -> LoggingController:
    """Return the process-wide controller built from the environment."""

    default_interval_raw = os.getenv(DEFAULT_INTERVAL_ENV_VAR)
    default_interval = (
        DEFAULT_INTERVAL_SECONDS
        if default_interval_raw is None
        else _parse_interval(default_interval_raw)
    )

    return LoggingController(
        default_interval=default_interval,
        default_fallback_level=DEFAULT_FALLBACK_LEVEL,
        rules=parse_rules(os.getenv(LOG_RULES_ENV_VAR, "")),
    )
