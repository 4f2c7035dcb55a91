"""Local deterministic heuristics and per-user ring buffers.

These run without the external classifier: spam patterns, keyword
matches, message velocity and sentiment trend. They also provide the
keyword fallbacks used when the classifier fails for toxicity and FUD.

Buffers are bounded per user and deduplicated by event id, so one
message checked by several watches is counted once.
"""

from __future__ import annotations

import re
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Iterable, Optional

from warden.models.classification import NOT_TRIGGERED, ConditionResult
from warden.policy.resolver import HeuristicPolicy

TOXIC_KEYWORDS = ("fuck", "shit", "idiot", "stupid", "retard", "kill yourself")
FUD_KEYWORDS = ("scam", "rug pull", "exit scam", "ponzi", "dead project")

TOXIC_FALLBACK_CONFIDENCE = 0.9
FUD_FALLBACK_CONFIDENCE = 0.6

_REPEATED_CHARS = re.compile(r"(.)\1{5,}")
_CAPS = re.compile(r"[A-Z]")


def first_keyword(content: str, keywords: Iterable[str]) -> Optional[str]:
    """Case-insensitive substring match; returns the first keyword found."""
    lowered = content.lower()
    for keyword in keywords:
        needle = keyword.strip().lower()
        if needle and needle in lowered:
            return keyword
    return None


def keyword_condition(content: str, keywords: Iterable[str]) -> ConditionResult:
    keyword = first_keyword(content, keywords)
    if keyword is None:
        return NOT_TRIGGERED
    return ConditionResult(True, f'Keyword match: "{keyword}"', 1.0)


def toxicity_fallback(content: str, threshold: float) -> ConditionResult:
    keyword = first_keyword(content, TOXIC_KEYWORDS)
    if keyword is None or TOXIC_FALLBACK_CONFIDENCE < threshold:
        return NOT_TRIGGERED
    return ConditionResult(
        True, f'Toxic language detected (fallback): "{keyword}"', TOXIC_FALLBACK_CONFIDENCE,
    )


def fud_fallback(content: str, threshold: float) -> ConditionResult:
    keyword = first_keyword(content, FUD_KEYWORDS)
    if keyword is None or FUD_FALLBACK_CONFIDENCE < threshold:
        return NOT_TRIGGERED
    return ConditionResult(True, "FUD keyword detected (fallback)", FUD_FALLBACK_CONFIDENCE)


def spam_check(content: str, mention_count: int, policy: HeuristicPolicy) -> ConditionResult:
    """Excessive caps, long character runs, or mass mentions."""
    if content and len(content) > policy.spam_min_length:
        caps_ratio = len(_CAPS.findall(content)) / len(content)
        if caps_ratio > policy.spam_caps_ratio:
            return ConditionResult(True, "Excessive capitalization (spam)", 0.8)
    if _REPEATED_CHARS.search(content):
        return ConditionResult(True, "Repeated characters (spam)", 0.9)
    if mention_count > policy.spam_max_mentions:
        return ConditionResult(True, f"Mass mentions ({mention_count} users)", 0.95)
    return NOT_TRIGGERED


class VelocityTracker:
    """Per-user sliding window of message timestamps."""

    def __init__(self, window_seconds: float, buffer_size: int) -> None:
        self._window = timedelta(seconds=window_seconds)
        self._buffer_size = buffer_size
        self._buffers: dict[str, deque] = {}
        self._lock = threading.Lock()

    def observe(self, user_id: str, event_id: str, timestamp: datetime) -> int:
        """Record the event (once) and return messages inside the window."""
        with self._lock:
            buf = self._buffers.get(user_id)
            if buf is None:
                buf = deque(maxlen=self._buffer_size)
                self._buffers[user_id] = buf
            if all(eid != event_id for eid, _ in buf):
                buf.append((event_id, timestamp))
            cutoff = timestamp - self._window
            return sum(1 for _, ts in buf if cutoff <= ts <= timestamp)

    def check(
        self, user_id: str, event_id: str, timestamp: datetime, threshold: float,
    ) -> ConditionResult:
        count = self.observe(user_id, event_id, timestamp)
        if count <= threshold:
            return NOT_TRIGGERED
        seconds = int(self._window.total_seconds())
        return ConditionResult(
            True,
            f"Rapid messaging: {count} messages in last {seconds} seconds",
            min(count / (threshold * 2), 1.0),
        )

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._buffers.pop(user_id, None)

    def prune(self, cutoff: datetime) -> int:
        """Drop users whose newest message is older than ``cutoff``."""
        with self._lock:
            idle = [
                user_id for user_id, buf in self._buffers.items()
                if not buf or max(ts for _, ts in buf) < cutoff
            ]
            for user_id in idle:
                del self._buffers[user_id]
        return len(idle)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)


class SentimentTracker:
    """Per-user sliding window of sentiment readings in [-1, 1].

    trend = mean(last ``recent`` readings) - mean(older readings in the
    window). A falling mood gives a negative trend.
    """

    def __init__(self, window: int, recent: int, min_samples: int) -> None:
        self._window = window
        self._recent = recent
        self._min_samples = min_samples
        self._buffers: dict[str, deque] = {}
        self._last_seen: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def seen(self, user_id: str, event_id: str) -> bool:
        with self._lock:
            buf = self._buffers.get(user_id)
            return buf is not None and any(eid == event_id for eid, _ in buf)

    def observe(
        self, user_id: str, event_id: str, sentiment: float,
        timestamp: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            if timestamp is not None:
                self._last_seen[user_id] = max(timestamp, self._last_seen.get(user_id, timestamp))
            buf = self._buffers.get(user_id)
            if buf is None:
                buf = deque(maxlen=self._window)
                self._buffers[user_id] = buf
            if all(eid != event_id for eid, _ in buf):
                buf.append((event_id, max(-1.0, min(1.0, sentiment))))

    def trend(self, user_id: str) -> Optional[tuple[float, float, float]]:
        """Return (older_mean, recent_mean, trend), or None with too few samples."""
        with self._lock:
            values = [v for _, v in self._buffers.get(user_id, ())]
        if len(values) < self._min_samples:
            return None
        recent = values[-self._recent:]
        older = values[:-self._recent]
        recent_mean = sum(recent) / len(recent)
        older_mean = sum(older) / len(older)
        return older_mean, recent_mean, recent_mean - older_mean

    def check(self, user_id: str, threshold: float) -> ConditionResult:
        reading = self.trend(user_id)
        if reading is None:
            return NOT_TRIGGERED
        older_mean, recent_mean, trend = reading
        if trend >= threshold:
            return NOT_TRIGGERED
        return ConditionResult(
            True,
            f"Sentiment declining: {older_mean:.2f} -> {recent_mean:.2f} (trend: {trend:.2f})",
            min(abs(trend), 1.0),
        )

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._buffers.pop(user_id, None)
            self._last_seen.pop(user_id, None)

    def prune(self, cutoff: datetime) -> int:
        """Drop users last observed before ``cutoff``."""
        with self._lock:
            idle = [u for u, seen_at in self._last_seen.items() if seen_at < cutoff]
            for user_id in idle:
                del self._last_seen[user_id]
                self._buffers.pop(user_id, None)
        return len(idle)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)
