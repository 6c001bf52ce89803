"""Keyword-based event category classifier."""
import hashlib
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import config
from processor.models import AlternativeCategory, Classification, MatchedKeyword

logger = logging.getLogger(__name__)

MUSIC_GENRES = (
    'rock', 'pop', 'sertanejo', 'funk', 'rap', 'eletrônica', 'jazz',
    'blues', 'reggae', 'forró', 'pagode', 'samba', 'mpb', 'gospel',
    'country', 'indie', 'metal', 'punk', 'bossa nova'
)

EVENT_TYPES = (
    'festival', 'show', 'concert', 'turnê', 'apresentação', 'espetáculo',
    'peça', 'musical', 'stand-up', 'palestra', 'workshop', 'curso',
    'competição', 'campeonato', 'torneio', 'corrida', 'maratona'
)

AUDIENCES = (
    'infantil', 'família', 'adulto', 'jovem', 'terceira idade',
    'profissional', 'estudante', 'empresarial'
)

FORMATS = (
    'presencial', 'online', 'híbrido', 'ao vivo', 'gravado',
    'interativo', 'imersivo', 'virtual'
)

PATTERN_TAGS = (
    ('gratuito', ('grátis', 'gratuito', 'free')),
    ('premium', ('vip', 'premium')),
    ('nacional', ('nacional', 'brasil')),
    ('internacional', ('internacional', 'mundial')),
    ('ao-ar-livre', ('ao ar livre', 'outdoor')),
)


class CategoryClassifier:
    """Scores event text against the configured category keywords."""

    def __init__(self, categories: Optional[Dict[str, config.CategoryDefinition]] = None):
        self.categories = categories or config.CATEGORIES
        self._cache: Dict[str, Classification] = {}
        self._patterns: Dict[str, re.Pattern] = {}
        self.reset()

    def classify(self, title: Optional[str], description: Optional[str] = None) -> Classification:
        """
        Classify an event by its title and description.

        Args:
            title: Event title
            description: Event description

        Returns:
            Classification with category, confidence, tags and alternatives
        """
        title = (title or '').lower()
        text = f"{title} {(description or '').lower()}".strip()
        cache_key = hashlib.sha256(text.encode('utf-8')).hexdigest()

        self.stats['total_classifications'] += 1
        cached = self._cache.get(cache_key)
        if cached is not None:
            self.stats['cache_hits'] += 1
            return cached

        classification = self._score(text, title)

        distribution = self.stats['category_distribution']
        distribution[classification.category] = distribution.get(classification.category, 0) + 1
        self._cache[cache_key] = classification

        logger.debug(
            f"Classified '{title[:60]}' as {classification.category} "
            f"(confidence {classification.confidence})"
        )
        return classification

    def _score(self, text: str, title: str) -> Classification:
        scores: Dict[str, float] = {}
        matched: Dict[str, List[MatchedKeyword]] = {}

        for key, definition in self.categories.items():
            if not definition.keywords:
                continue
            total = 0.0
            for keyword in definition.keywords:
                keyword = keyword.lower()
                matches = self._count_matches(text, keyword)
                if matches <= 0:
                    continue
                score = matches
                if keyword in title:
                    score *= config.TITLE_MATCH_MULTIPLIER
                if len(keyword) > config.LONG_KEYWORD_LENGTH:
                    score *= config.LONG_KEYWORD_MULTIPLIER
                total += score
                matched.setdefault(key, []).append(MatchedKeyword(keyword, matches, score))
            if total > 0:
                scores[key] = total * (10 - definition.priority) / 10

        tags = self.extract_tags(text)
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)

        if not ranked or (len(ranked) > 1 and ranked[0][1] == ranked[1][1]):
            return Classification(
                category=config.DEFAULT_CATEGORY,
                confidence=config.FALLBACK_CONFIDENCE,
                tags=tags
            )

        best_category, best_score = ranked[0]
        total_score = sum(scores.values())
        confidence = min(max(best_score / max(total_score, 1), 0.0), 1.0)

        alternatives = tuple(
            AlternativeCategory(category, round(score / total_score, 2))
            for category, score in ranked[1:1 + config.MAX_ALTERNATIVES]
            if score >= best_score * config.ALTERNATIVE_THRESHOLD
        )

        return Classification(
            category=best_category,
            confidence=round(confidence, 2),
            tags=tags,
            matched_keywords=tuple(matched.get(best_category, ())),
            alternative_categories=alternatives
        )

    def _count_matches(self, text: str, keyword: str) -> float:
        pattern = self._patterns.get(keyword)
        if pattern is None:
            pattern = re.compile(rf'\b{re.escape(keyword)}\b')
            self._patterns[keyword] = pattern
        exact = len(pattern.findall(text))
        partial = text.count(keyword) - exact
        return exact + config.PARTIAL_MATCH_WEIGHT * max(partial, 0)

    @staticmethod
    def extract_tags(text: str) -> tuple:
        """Vocabulary and pattern tags found in lowercased text, without repeats."""
        tags: List[str] = []
        for tag in MUSIC_GENRES + EVENT_TYPES + AUDIENCES + FORMATS:
            if tag in text and tag not in tags:
                tags.append(tag)
        for tag, triggers in PATTERN_TAGS:
            if tag not in tags and any(trigger in text for trigger in triggers):
                tags.append(tag)
        return tuple(tags)

    def classify_events(self, events: Iterable[Any]) -> List[Classification]:
        """Classify objects exposing title and description attributes."""
        events = list(events)
        logger.info(f"Classifying {len(events)} events")
        return [self.classify(event.title, event.description) for event in events]

    def suggest_improvements(self, event: Any, correct_category: str) -> Optional[Dict[str, Any]]:
        """
        Suggest keyword changes after a misclassification.

        Returns:
            None when the current classification already matches
        """
        current = self.classify(event.title, event.description)
        if current.category == correct_category:
            return None

        suggestions = {
            'event': {
                'title': event.title,
                'current_category': current.category,
                'correct_category': correct_category
            },
            'improvements': []
        }

        definition = self.categories.get(correct_category)
        if definition is None:
            return suggestions

        text = f"{event.title or ''} {event.description or ''}".lower()
        for keyword in definition.keywords:
            if keyword.lower() in text:
                suggestions['improvements'].append({
                    'type': 'keyword_weight',
                    'suggestion': f"Raise the weight of '{keyword}' for '{correct_category}'"
                })

        candidates = [
            word for word in text.split()
            if len(word) > 3 and not any(word in k.lower() for k in definition.keywords)
        ]
        if candidates:
            suggestions['improvements'].append({
                'type': 'new_keywords',
                'suggestion': f"Consider adding keywords: {', '.join(candidates[:3])}"
            })

        return suggestions

    def is_valid_category(self, category: str) -> bool:
        return category in self.categories

    def get_category_info(self, category: str) -> Optional[config.CategoryDefinition]:
        return self.categories.get(category)

    def get_available_categories(self) -> List[str]:
        return list(self.categories)

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats['total_classifications']
        return {
            **self.stats,
            'cache_size': len(self._cache),
            'cache_efficiency': round(self.stats['cache_hits'] / total * 100) if total else 0
        }

    def reset(self) -> None:
        self._cache.clear()
        self.stats = {
            'total_classifications': 0,
            'cache_hits': 0,
            'category_distribution': {}
        }
