"""
Language-model calls with key rotation.

Every call acquires a key from the KeyManager, runs the request and sorts the
result into one of four outcomes:

  SUCCESS       rate-limit headers are checked and near-exhausted keys reported
  RATE_LIMITED  the limit is reported and the next attempt uses another key
  TRANSIENT     connection or timeout problem; retried without reporting
  FATAL         re-raised immediately

After MAX_ATTEMPTS rate-limited attempts the caller gets a single
AllKeysRateLimitedError carrying a user-facing message.
"""

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional

import groq
import httpx
from groq import AsyncGroq

from jurnalgpt.config import DEFAULT_MODEL
from jurnalgpt.key_manager import ApiKey, KeyManager
from jurnalgpt.limit_store import LimitType

logger = logging.getLogger(__name__)

PROVIDER = "groq"
MAX_ATTEMPTS = 3
REQUEST_TIMEOUT = 20.0

REQUEST_THRESHOLD = 5
TOKEN_THRESHOLD = 2000

RATE_LIMITED_MESSAGE = (
    "Layanan AI sedang sibuk karena batas penggunaan tercapai. "
    "Silakan coba lagi beberapa saat lagi."
)

_PERIOD_LETTER = {"minute": "m", "hour": "h", "day": "d"}
_PERIOD_SECONDS = {"m": 60, "h": 3600, "d": 86400}


class AllKeysRateLimitedError(RuntimeError):
    def __init__(self, message: str = RATE_LIMITED_MESSAGE):
        super().__init__(message)


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass
class Attempt:
    outcome: AttemptOutcome
    value: Any = None
    error: Optional[BaseException] = None


class LimitHint(NamedTuple):
    limit_type: LimitType
    remaining: int
    reset_in_seconds: float


# ---------------------------------------------------------------------------
# Header / error parsing
# ---------------------------------------------------------------------------

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


def parse_duration(value: Optional[str]) -> Optional[float]:
    """Seconds from '42', '7.66s', '2m59.56s', '120ms' or '1h2m'."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        pass

    total = 0.0
    matched = False
    for amount, unit in _DURATION_PART.findall(value):
        matched = True
        amount = float(amount)
        if unit == "ms":
            total += amount / 1000
        elif unit == "s":
            total += amount
        elif unit == "m":
            total += amount * 60
        else:
            total += amount * 3600
    return total if matched else None


def _header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


def near_limits_from_headers(headers: Optional[Mapping[str, str]]) -> list[LimitHint]:
    """Limits whose remaining capacity is under the reporting threshold."""
    if not headers:
        return []

    hints: list[LimitHint] = []
    for kind, threshold in (("requests", REQUEST_THRESHOLD), ("tokens", TOKEN_THRESHOLD)):
        for period, letter in _PERIOD_LETTER.items():
            remaining = _header_int(headers, f"x-ratelimit-remaining-{kind}-{period}")
            if remaining is None or remaining >= threshold:
                continue
            reset = parse_duration(headers.get(f"x-ratelimit-reset-{kind}-{period}"))
            hints.append(LimitHint(
                f"{kind[0]}p{letter}",
                remaining,
                reset if reset is not None else _PERIOD_SECONDS[letter],
            ))

    # Unsuffixed headers: requests are counted per day, tokens per minute.
    for kind, threshold, limit_type in (
        ("requests", REQUEST_THRESHOLD, "rpd"),
        ("tokens", TOKEN_THRESHOLD, "tpm"),
    ):
        remaining = _header_int(headers, f"x-ratelimit-remaining-{kind}")
        if remaining is None or remaining >= threshold:
            continue
        reset = parse_duration(headers.get(f"x-ratelimit-reset-{kind}"))
        hints.append(LimitHint(
            limit_type,
            remaining,
            reset if reset is not None else _PERIOD_SECONDS[limit_type[-1]],
        ))
    return hints


_LIMIT_PHRASE = re.compile(r"(requests|tokens)\s+per\s+(minute|hour|day)", re.IGNORECASE)
_LIMIT_ABBREV = re.compile(r"\b([rt]p[mhd])\b", re.IGNORECASE)
_TRY_AGAIN = re.compile(r"try again in\s+((?:\d+(?:\.\d+)?(?:ms|h|m|s))+)", re.IGNORECASE)


def limit_from_error(exc: BaseException) -> LimitHint:
    """Infer which limit a 429 hit and how long until it resets."""
    message = str(exc)

    limit_type: LimitType = "rpm"
    phrase = _LIMIT_PHRASE.search(message)
    if phrase:
        kind, period = phrase.group(1).lower(), phrase.group(2).lower()
        limit_type = f"{kind[0]}p{_PERIOD_LETTER[period]}"
    else:
        abbrev = _LIMIT_ABBREV.search(message)
        if abbrev:
            limit_type = abbrev.group(1).lower()

    reset: Optional[float] = None
    response = getattr(exc, "response", None)
    if response is not None:
        reset = parse_duration(response.headers.get("retry-after"))
    if reset is None:
        try_again = _TRY_AGAIN.search(message)
        if try_again:
            reset = parse_duration(try_again.group(1))
    if reset is None:
        reset = _PERIOD_SECONDS[limit_type[-1]]

    return LimitHint(limit_type, 0, reset)


def classify_error(exc: BaseException) -> AttemptOutcome:
    if isinstance(exc, groq.RateLimitError):
        return AttemptOutcome.RATE_LIMITED
    if isinstance(exc, groq.APIStatusError):
        return AttemptOutcome.RATE_LIMITED if exc.status_code == 429 else AttemptOutcome.FATAL
    if isinstance(exc, (groq.APIConnectionError, httpx.TimeoutException, httpx.TransportError)):
        return AttemptOutcome.TRANSIENT
    return AttemptOutcome.FATAL


# ---------------------------------------------------------------------------
# Rotating client
# ---------------------------------------------------------------------------

def _default_client_factory(api_key: str) -> AsyncGroq:
    # SDK retries are disabled so that every retry goes through rotation.
    return AsyncGroq(api_key=api_key, max_retries=0, timeout=REQUEST_TIMEOUT)


class RotatingGroq:
    def __init__(
        self,
        key_manager: KeyManager,
        model: str = DEFAULT_MODEL,
        client_factory: Callable[[str], Any] = _default_client_factory,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.key_manager = key_manager
        self.model = model
        self.max_attempts = max_attempts
        self._client_factory = client_factory
        self._clients: dict[str, Any] = {}

    def _client_for(self, api_key: ApiKey):
        client = self._clients.get(api_key.name)
        if client is None:
            client = self._client_factory(api_key.key)
            self._clients[api_key.name] = client
        return client

    async def _report(self, key_name: str, hint: LimitHint) -> None:
        await self.key_manager.report_limit(
            PROVIDER,
            self.model,
            key_name,
            hint.limit_type,
            hint.remaining,
            hint.reset_in_seconds,
        )

    async def _attempt(self, invoke: Callable[[Any], Awaitable[Any]], api_key: ApiKey) -> Attempt:
        try:
            raw = await invoke(self._client_for(api_key))
            value = raw.parse() if hasattr(raw, "parse") else raw
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            return Attempt(classify_error(exc), error=exc)

        for hint in near_limits_from_headers(getattr(raw, "headers", None)):
            logger.warning(
                "High usage detected for %s (%s): %s remaining",
                api_key.name,
                hint.limit_type,
                hint.remaining,
            )
            await self._report(api_key.name, hint)
        return Attempt(AttemptOutcome.SUCCESS, value=value)

    async def call(self, invoke: Callable[[Any], Awaitable[Any]]) -> Any:
        """Run `invoke(client)` with rotation.

        `invoke` should return a raw SDK response (``with_raw_response``) so the
        rate-limit headers can be read; plain results are passed through.
        """
        last: Optional[Attempt] = None

        for attempt_no in range(1, self.max_attempts + 1):
            api_key = await self.key_manager.acquire(PROVIDER, self.model)
            logger.debug("Using %s key %s (attempt %s)", PROVIDER, api_key.name, attempt_no)
            last = await self._attempt(invoke, api_key)

            if last.outcome is AttemptOutcome.SUCCESS:
                return last.value

            if last.outcome is AttemptOutcome.RATE_LIMITED:
                hint = limit_from_error(last.error)
                logger.warning(
                    "429 for %s (%s, resets in %.0fs), rotating key",
                    api_key.name,
                    hint.limit_type,
                    hint.reset_in_seconds,
                )
                await self._report(api_key.name, hint)
                continue

            if last.outcome is AttemptOutcome.TRANSIENT:
                logger.warning("Connection error on key %s, retrying: %s", api_key.name, last.error)
                continue

            raise last.error

        if last is not None and last.outcome is AttemptOutcome.RATE_LIMITED:
            raise AllKeysRateLimitedError() from last.error
        raise last.error

    async def complete(self, messages: list[dict], **kwargs) -> Optional[str]:
        response = await self.call(
            lambda client: client.chat.completions.with_raw_response.create(
                model=self.model,
                messages=messages,
                **kwargs,
            )
        )
        return response.choices[0].message.content

    async def stream(self, messages: list[dict], **kwargs):
        """Open a streaming completion; the returned object is async-iterable."""
        return await self.call(
            lambda client: client.chat.completions.with_raw_response.create(
                model=self.model,
                messages=messages,
                stream=True,
                **kwargs,
            )
        )
