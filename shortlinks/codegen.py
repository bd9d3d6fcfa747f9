"""Short code generation and custom alias reservation.

Flow Diagram — generate()
=========================
::
    ┌──────────────┐
    │ generate(    │
    │  alias?)     │
    └──────┬───────┘
    ALIAS? │
    ┌──────┴───────────────┐
    │ YES                  │ NO
    ▼                      ▼
┌──────────────┐   ┌────────────────┐
│ validate     │   │ nanoid over    │◄─────┐
│ length and   │   │ ALPHABET       │      │
│ charset      │   └───────┬────────┘      │
└──────┬───────┘           ▼               │
       ▼           ┌────────────────┐  TAKEN and
┌──────────────┐   │ is_code_taken? │  attempts left
│ is_code_     │   └───────┬────────┘──────┘
│ taken?       │           │ FREE
└──────┬───────┘           ▼
       ▼              return code
 AliasTaken / alias

Key Behaviours
===============
- Uniqueness is checked against short codes, custom aliases and retired codes.
- Codes that shadow the app's own routes are never handed out.
- The check is optimistic. The store's unique constraints close the race at insert time.
- Running out of attempts raises ``CodeGenerationExhausted``. At 62^6 codes that only
  happens when something is systemically wrong (store outage, exhausted keyspace).
"""

import logging
import re
from typing import Protocol

from nanoid import generate
from prometheus_client import Counter

from shortlinks.config import Settings
from shortlinks.exceptions import AliasTaken, CodeGenerationExhausted, InvalidAlias

__all__ = ["ALPHABET", "ALIAS_PATTERN", "RESERVED_CODES", "CodeGenerator", "generate_short_code", "validate_alias"]

logger = logging.getLogger(__name__)

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
# Paths served by the app itself; a link here would never be reachable.
RESERVED_CODES = frozenset({"api", "docs", "redoc", "health", "metrics"})

SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "shortlinks_short_code_collisions_total",
    "Generated short codes that were already taken",
)


class CodeAvailability(Protocol):
    async def is_code_taken(self, code: str) -> bool: ...


def generate_short_code(length: int) -> str:
    if not isinstance(length, int) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    return generate(ALPHABET, length)


def validate_alias(alias: str, min_length: int = 3, max_length: int = 50) -> str:
    if len(alias) < min_length or len(alias) > max_length:
        raise InvalidAlias(f"Custom alias must be between {min_length} and {max_length} characters")
    if not ALIAS_PATTERN.match(alias):
        raise InvalidAlias("Custom alias can only contain letters, numbers, hyphens, and underscores")
    if alias in RESERVED_CODES:
        raise InvalidAlias(f"Custom alias '{alias}' is reserved")
    return alias


class CodeGenerator:
    def __init__(self, availability: CodeAvailability, settings: Settings) -> None:
        self._availability = availability
        self._length = settings.SHORT_CODE_LENGTH
        self._max_attempts = settings.SHORT_CODE_MAX_ATTEMPTS
        self._alias_min = settings.CUSTOM_ALIAS_MIN_LENGTH
        self._alias_max = settings.CUSTOM_ALIAS_MAX_LENGTH

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def generate(self, custom_alias: str | None = None) -> str:
        """Return a code that was free at the time of the check.

        Raises:
            InvalidAlias: malformed custom alias.
            AliasTaken: custom alias collides with any existing or retired code.
            CodeGenerationExhausted: no free random code within the attempt bound.
        """
        if custom_alias is not None:
            return await self.reserve_alias(custom_alias)

        for attempt in range(1, self._max_attempts + 1):
            code = generate_short_code(self._length)
            if code not in RESERVED_CODES and not await self._availability.is_code_taken(code):
                return code
            SHORT_CODE_COLLISIONS_TOTAL.inc()
            logger.debug(f"Short code collision on attempt {attempt}: {code}")

        logger.error(f"Short code generation exhausted after {self._max_attempts} attempts")
        raise CodeGenerationExhausted(self._max_attempts)

    async def reserve_alias(self, alias: str) -> str:
        validate_alias(alias, self._alias_min, self._alias_max)
        if await self._availability.is_code_taken(alias):
            raise AliasTaken(alias)
        return alias
