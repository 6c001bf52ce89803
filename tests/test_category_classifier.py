"""Unit tests for CategoryClassifier."""
from types import SimpleNamespace

import pytest

from processor.category_classifier import CategoryClassifier


@pytest.fixture
def classifier():
    return CategoryClassifier()


class TestClassify:
    """Test cases for classify."""

    def test_rock_show(self, classifier):
        """Test a rock show lands in shows with high confidence."""
        result = classifier.classify('Show de Rock Nacional', '')

        assert result.category == 'shows'
        assert result.confidence > 0.3
        assert 'rock' in result.tags
        assert 'show' in result.tags
        assert 'nacional' in result.tags
        assert {k.keyword for k in result.matched_keywords} == {'show', 'rock'}

    def test_empty_text(self, classifier):
        """Test empty input falls back to outros without tags."""
        result = classifier.classify('', '')

        assert result.category == 'outros'
        assert result.confidence == 0.1
        assert result.tags == ()
        assert result.alternative_categories == ()

    def test_none_input(self, classifier):
        """Test missing title and description behave like empty text."""
        result = classifier.classify(None, None)

        assert result.category == 'outros'
        assert result.confidence == 0.1

    def test_no_keywords(self, classifier):
        """Test unrelated text falls back to outros but keeps tags."""
        result = classifier.classify('Encontro online de colecionadores', '')

        assert result.category == 'outros'
        assert result.confidence == 0.1
        assert 'online' in result.tags

    def test_sports(self, classifier):
        """Test a marathon is classified as esportes."""
        result = classifier.classify('Maratona de Porto Velho', 'Corrida de rua com percursos de 5 e 10 km')

        assert result.category == 'esportes'
        assert 0 < result.confidence <= 1

    def test_tie_falls_back(self):
        """Test equal top scores fall back to the default category."""
        from config import CategoryDefinition

        categories = {
            'a': CategoryDefinition('A', ('alpha',), priority=1),
            'b': CategoryDefinition('B', ('bravo',), priority=1),
            'outros': CategoryDefinition('Outros', (), priority=99),
        }
        result = CategoryClassifier(categories).classify('alpha bravo', '')

        assert result.category == 'outros'
        assert result.confidence == 0.1

    def test_alternatives(self):
        """Test runners-up above the threshold are reported as alternatives."""
        from config import CategoryDefinition

        categories = {
            'a': CategoryDefinition('A', ('guitarra',), priority=0),
            'b': CategoryDefinition('B', ('bateria',), priority=0),
            'c': CategoryDefinition('C', ('teclado',), priority=0),
        }
        result = CategoryClassifier(categories).classify('guitarra', 'bateria teclado')

        # guitarra: x2 (title) x1.5 (long) = 3; bateria and teclado: x1.5 = 1.5 each
        assert result.category == 'a'
        assert result.confidence == 0.5
        assert [alt.category for alt in result.alternative_categories] == ['b', 'c']
        assert all(alt.confidence == 0.25 for alt in result.alternative_categories)

    def test_partial_match_counts_half(self, classifier):
        """Test a keyword inside a longer word scores half a match."""
        assert classifier._count_matches('rockstar rock', 'rock') == 1.5

    def test_cache(self, classifier):
        """Test identical text is served from the cache."""
        first = classifier.classify('Festival de Jazz', 'Música ao vivo')
        second = classifier.classify('festival de jazz', 'música ao vivo')

        assert first is second
        stats = classifier.get_stats()
        assert stats['cache_hits'] == 1
        assert stats['cache_size'] == 1
        assert stats['cache_efficiency'] == 50

        classifier.reset()
        assert classifier.get_stats()['cache_size'] == 0


class TestHelpers:
    """Test cases for tags and category helpers."""

    def test_extract_tags(self):
        """Test vocabulary and pattern tags without repeats."""
        tags = CategoryClassifier.extract_tags('festival gratuito ao ar livre para toda a família com show vip')

        assert 'festival' in tags
        assert 'família' in tags
        assert 'gratuito' in tags
        assert 'ao-ar-livre' in tags
        assert 'premium' in tags
        assert len(tags) == len(set(tags))

    def test_classify_events(self, classifier):
        """Test batch classification of event-like objects."""
        events = [
            SimpleNamespace(title='Workshop de Python', description='Curso prático'),
            SimpleNamespace(title='', description=None),
        ]

        results = classifier.classify_events(events)

        assert [r.category for r in results] == ['educacao', 'outros']

    def test_suggest_improvements(self, classifier):
        """Test suggestions are produced only for misclassified events."""
        event = SimpleNamespace(title='Show de Rock Nacional', description='')

        assert classifier.suggest_improvements(event, 'shows') is None
        suggestions = classifier.suggest_improvements(event, 'teatro')
        assert suggestions['event']['current_category'] == 'shows'
        assert suggestions['improvements']

    def test_category_info(self, classifier):
        """Test category lookups."""
        assert classifier.is_valid_category('shows')
        assert not classifier.is_valid_category('cinema')
        assert classifier.get_category_info('teatro').priority == 2
        assert 'outros' in classifier.get_available_categories()
