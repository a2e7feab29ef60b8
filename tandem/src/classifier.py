"""Keyword-based category detection for message text.

Matching is case-insensitive substring containment, not whole-word, so
"database" counts as technical via "data". Korean keywords rely on the
same containment test since words carry attached particles.

Example::

    from tandem.src.classifier import classify

    result = classify("회의 일정 변경해야 할 것 같아요")
    assert result.dominant == Category.BUSINESS
"""

from __future__ import annotations

from dataclasses import dataclass

from tandem.src.models import Category

# Table order is also the order tags are reported in.
KEYWORD_TABLES: dict[Category, tuple[str, ...]] = {
    Category.BUSINESS: (
        "회의",
        "사업",
        "분기",
        "meeting",
        "business",
        "quarterly",
        "프로젝트",
        "계획",
    ),
    Category.TECHNICAL: (
        "시스템",
        "데이터",
        "api",
        "system",
        "data",
        "개발",
        "코딩",
        "프로그래밍",
    ),
    Category.CASUAL: (
        "안녕",
        "감사",
        "hello",
        "thank you",
        "어떻게",
        "뭐해",
        "좋아",
    ),
    Category.QUESTION: ("?", "？", "what", "어떻게", "무엇"),
    Category.FORMAL: ("습니다", "입니다", "께서", "하시", "please", "would you"),
}

# Categories eligible to become the stored dominant category, highest first.
DOMINANT_PRIORITY: tuple[Category, ...] = (
    Category.BUSINESS,
    Category.TECHNICAL,
    Category.CASUAL,
)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one piece of text.

    Attributes:
        tags: Matched categories in table order; ``(GENERAL,)`` if none.
        dominant: Single category persisted on learning patterns.
    """

    tags: tuple[Category, ...]
    dominant: Category

    def has(self, category: Category) -> bool:
        """Return True if *category* was tagged.

        Args:
            category: Category to look for.

        Returns:
            Whether the category is among the tags.
        """
        return category in self.tags


def detect_tags(text: str) -> tuple[Category, ...]:
    """Return every category whose keywords occur in *text*.

    Args:
        text: Message text in any case.

    Returns:
        Matched categories in table order, or ``(Category.GENERAL,)``.
    """
    lowered = text.lower()
    tags = tuple(
        category
        for category, keywords in KEYWORD_TABLES.items()
        if any(keyword in lowered for keyword in keywords)
    )
    return tags or (Category.GENERAL,)


def dominant_category(tags: tuple[Category, ...]) -> Category:
    """Collapse a tag set into one category by priority.

    Question and formal markers never dominate; text carrying only those
    is stored as general.

    Args:
        tags: Tags produced by ``detect_tags``.

    Returns:
        Business, technical, casual, or general.
    """
    for category in DOMINANT_PRIORITY:
        if category in tags:
            return category
    return Category.GENERAL


def classify(text: str) -> Classification:
    """Tag *text* and pick its dominant category.

    Args:
        text: Message text.

    Returns:
        Classification with tags and dominant category.
    """
    tags = detect_tags(text)
    return Classification(tags=tags, dominant=dominant_category(tags))
