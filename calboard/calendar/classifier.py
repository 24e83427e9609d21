"""Semantic classification and color assignment for occurrences."""

import logging
import re
from typing import Iterable, Optional

from calboard.calendar.models import EventType, Occurrence

logger = logging.getLogger(__name__)

DEFAULT_BIRTHDAY_KEYWORDS = ("birthday", "bday", "b-day")
DEFAULT_ANNIVERSARY_KEYWORDS = ("anniversary",)
DEFAULT_HOLIDAY_KEYWORDS = ("holiday",)
DEFAULT_IMPORTANT_KEYWORDS = ("important",)
DEFAULT_IMPORTANT_PRIORITY_MAX = 4

# Most specific first; a title matching several sets takes the earliest type
TYPE_SPECIFICITY = (EventType.BIRTHDAY, EventType.ANNIVERSARY, EventType.HOLIDAY)


def compile_keywords(keywords: Iterable[str]) -> Optional[re.Pattern]:
    """Build a case-insensitive whole-word pattern, or None for an empty set."""
    words = [re.escape(k.strip()) for k in keywords if k and k.strip()]
    if not words:
        return None
    return re.compile(r"(?<!\w)(?:" + "|".join(words) + r")(?!\w)", re.IGNORECASE)


class EventClassifier:
    """Tags occurrences with a semantic type, importance flag and display color."""

    def __init__(
        self,
        birthday_keywords: Iterable[str] = DEFAULT_BIRTHDAY_KEYWORDS,
        anniversary_keywords: Iterable[str] = DEFAULT_ANNIVERSARY_KEYWORDS,
        holiday_keywords: Iterable[str] = DEFAULT_HOLIDAY_KEYWORDS,
        important_keywords: Iterable[str] = DEFAULT_IMPORTANT_KEYWORDS,
        important_priority_max: int = DEFAULT_IMPORTANT_PRIORITY_MAX,
    ):
        self._type_patterns = {
            EventType.BIRTHDAY: compile_keywords(birthday_keywords),
            EventType.ANNIVERSARY: compile_keywords(anniversary_keywords),
            EventType.HOLIDAY: compile_keywords(holiday_keywords),
        }
        self._important_pattern = compile_keywords(important_keywords)
        self.important_priority_max = important_priority_max

    @classmethod
    def from_settings(cls, settings) -> "EventClassifier":
        """Build from a ``ClassifierSettings`` configuration block."""
        return cls(
            birthday_keywords=settings.birthday_keywords,
            anniversary_keywords=settings.anniversary_keywords,
            holiday_keywords=settings.holiday_keywords,
            important_keywords=settings.important_keywords,
            important_priority_max=settings.important_priority_max,
        )

    def _texts(self, occurrence: Occurrence) -> list[str]:
        return [occurrence.title, *occurrence.categories]

    def _matches(self, pattern: Optional[re.Pattern], texts: list[str]) -> bool:
        if pattern is None:
            return False
        return any(pattern.search(text) for text in texts if text)

    def event_type_for(self, occurrence: Occurrence) -> EventType:
        """Semantic type from title and category keywords; regular when nothing matches."""
        texts = self._texts(occurrence)
        for event_type in TYPE_SPECIFICITY:
            if self._matches(self._type_patterns[event_type], texts):
                return event_type
        return EventType.REGULAR

    def is_important(self, occurrence: Occurrence) -> bool:
        if occurrence.priority is not None and occurrence.priority <= self.important_priority_max:
            return True
        return self._matches(self._important_pattern, self._texts(occurrence))

    def classify(
        self,
        occurrence: Occurrence,
        profile_color: str,
        source_color: Optional[str] = None,
        forced_type: Optional[EventType] = None,
    ) -> Occurrence:
        """Return a copy annotated with type, importance and color.

        Args:
            occurrence: Expanded occurrence
            profile_color: Owning profile's display color
            source_color: Optional per-source color taking precedence over the profile's
            forced_type: Source-level type applied to every item of the feed
        """
        event_type = forced_type or self.event_type_for(occurrence)
        color = occurrence.color or source_color or profile_color
        return occurrence.model_copy(
            update={
                "event_type": event_type,
                "important": self.is_important(occurrence),
                "color": color,
            }
        )

    def classify_all(
        self,
        occurrences: Iterable[Occurrence],
        profile_color: str,
        source_color: Optional[str] = None,
        forced_type: Optional[EventType] = None,
    ) -> list[Occurrence]:
        classified = [
            self.classify(o, profile_color, source_color, forced_type) for o in occurrences
        ]
        if logger.isEnabledFor(logging.DEBUG):
            special = sum(1 for o in classified if o.event_type != EventType.REGULAR)
            logger.debug("Classified %d occurrences (%d special)", len(classified), special)
        return classified
