"""Settings, source definitions and scoring constants for the scraping pipeline."""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from errors import ErrorType, ScrapingError

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryDefinition:
    """A classifier category; lower priority values win ties."""
    name: str
    keywords: Tuple[str, ...]
    priority: int


DEFAULT_CATEGORY = 'outros'

CATEGORIES: Dict[str, CategoryDefinition] = {
    'shows': CategoryDefinition(
        name='Shows e Música',
        keywords=(
            'show', 'música', 'concert', 'banda', 'cantor', 'cantora', 'festival',
            'rock', 'pop', 'sertanejo', 'funk', 'rap', 'eletrônica', 'jazz',
            'blues', 'reggae', 'forró', 'pagode', 'samba', 'mpb', 'turnê',
            'artista', 'musical', 'live', 'apresentação'
        ),
        priority=1
    ),
    'teatro': CategoryDefinition(
        name='Teatro e Artes Cênicas',
        keywords=(
            'teatro', 'peça', 'espetáculo', 'drama', 'comédia', 'musical',
            'ópera', 'dança', 'ballet', 'circo', 'stand-up', 'monólogo',
            'improviso', 'performance', 'arte cênica'
        ),
        priority=2
    ),
    'esportes': CategoryDefinition(
        name='Esportes e Competições',
        keywords=(
            'futebol', 'basquete', 'vôlei', 'corrida', 'maratona', 'campeonato',
            'torneio', 'copa', 'liga', 'jogo', 'partida', 'competição',
            'atletismo', 'natação', 'ciclismo', 'triathlon', 'crossfit'
        ),
        priority=3
    ),
    'gastronomia': CategoryDefinition(
        name='Gastronomia e Culinária',
        keywords=(
            'festival', 'culinária', 'gastronomia', 'food', 'comida', 'degustação',
            'chef', 'restaurante', 'cerveja', 'vinho', 'churrasco', 'barbecue',
            'street food', 'food truck', 'cozinha', 'sabor'
        ),
        priority=4
    ),
    'educacao': CategoryDefinition(
        name='Educação e Desenvolvimento',
        keywords=(
            'curso', 'workshop', 'palestra', 'seminário', 'conferência', 'treinamento',
            'capacitação', 'aula', 'masterclass', 'webinar', 'mentoria',
            'coaching', 'desenvolvimento', 'aprendizado', 'conhecimento'
        ),
        priority=5
    ),
    'tecnologia': CategoryDefinition(
        name='Tecnologia e Inovação',
        keywords=(
            'tech', 'tecnologia', 'programação', 'desenvolvimento', 'software',
            'hackathon', 'startup', 'inovação', 'digital', 'ia', 'inteligência artificial',
            'blockchain', 'meetup', 'dev', 'coding'
        ),
        priority=6
    ),
    'infantil': CategoryDefinition(
        name='Eventos Infantis',
        keywords=(
            'infantil', 'criança', 'família', 'kids', 'teatro infantil',
            'show infantil', 'parque', 'diversão', 'brinquedo', 'educativo',
            'recreação', 'animação'
        ),
        priority=7
    ),
    DEFAULT_CATEGORY: CategoryDefinition(
        name='Outros Eventos',
        keywords=(),
        priority=99
    ),
}

# Empirical scoring constants, kept as-is
TITLE_MATCH_MULTIPLIER = 2.0
LONG_KEYWORD_LENGTH = 5
LONG_KEYWORD_MULTIPLIER = 1.5
PARTIAL_MATCH_WEIGHT = 0.5
ALTERNATIVE_THRESHOLD = 0.3
MAX_ALTERNATIVES = 2
FALLBACK_CONFIDENCE = 0.1

# ---------------------------------------------------------------------------
# Quality scoring
# ---------------------------------------------------------------------------

QUALITY_WEIGHTS: Dict[str, float] = {
    'title': 0.30,
    'date': 0.20,
    'venue': 0.20,
    'image': 0.15,
    'description': 0.10,
    'url': 0.05,
}
MIN_QUALITY_SCORE = 0.3
MIN_DESCRIPTION_LENGTH = 20

POPULARITY_BASE = 0.5
POPULARITY_SOURCE_BONUS: Dict[str, float] = {
    'eventbrite': 0.2,
    'sympla': 0.15,
}
POPULARITY_IMAGE_BONUS = 0.1
POPULARITY_DESCRIPTION_BONUS = 0.1
POPULARITY_REGIONAL_BONUS = 0.15

# ---------------------------------------------------------------------------
# Geography
# ---------------------------------------------------------------------------

KNOWN_CITIES: Tuple[str, ...] = (
    'Ji-Paraná', 'Ariquemes', 'Cacoal', 'Rolim de Moura', 'Vilhena',
    'Porto Velho', 'Jaru', 'Ouro Preto do Oeste', 'Guajará-Mirim', 'Pimenta Bueno',
    'São Paulo', 'Rio de Janeiro', 'Brasília', 'Salvador', 'Fortaleza',
    'Belo Horizonte', 'Manaus', 'Curitiba', 'Recife', 'Goiânia', 'Belém', 'Porto Alegre'
)

STATE_NAMES: Dict[str, str] = {
    'rondônia': 'RO',
    'são paulo': 'SP',
    'rio de janeiro': 'RJ',
    'distrito federal': 'DF',
    'minas gerais': 'MG',
    'amazonas': 'AM',
    'bahia': 'BA',
}

STATE_CODES: Tuple[str, ...] = ('RO', 'SP', 'RJ', 'DF', 'MG', 'AM', 'BA', 'CE', 'PR', 'PE', 'GO', 'PA', 'RS')

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

DEFAULT_HEADERS: Dict[str, str] = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'pt-BR,pt;q=0.9,en;q=0.8',
    'DNT': '1',
    'Connection': 'keep-alive',
}


@dataclass
class QualityFilters:
    require_image: bool = False
    require_description: bool = False
    exclude_keywords: Tuple[str, ...] = ()


@dataclass
class SourceConfig:
    """Per-site scraping configuration."""
    name: str
    base_url: str
    search_url: str
    test_url: str
    rate_limit: float
    selectors: Dict[str, str]
    search_terms: Tuple[str, ...] = ()
    quality_filters: QualityFilters = field(default_factory=QualityFilters)
    enabled: bool = True


@dataclass
class ValidationRules:
    required_fields: Tuple[str, ...] = ('title', 'date', 'location')
    title_min_length: int = 5
    title_max_length: int = 200
    description_max_length: int = 2000
    future_events_only: bool = True
    max_days_in_future: int = 365


@dataclass
class Settings:
    """Runtime settings resolved from the environment."""
    events_table: str = 'events'
    logs_table: str = 'scraping_logs'
    aws_region: str = 'us-east-1'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    max_retries: int = 3
    batch_size: int = 50
    reports_dir: str = '/tmp/reports'
    primary_region: str = 'Ji-Paraná'
    primary_state: str = 'RO'
    nearby_cities: Tuple[str, ...] = ('Ariquemes', 'Cacoal', 'Rolim de Moura', 'Vilhena')
    validation: ValidationRules = field(default_factory=ValidationRules)
    sources: Dict[str, SourceConfig] = field(default_factory=dict)

    @property
    def regional_cities(self) -> Tuple[str, ...]:
        return self.nearby_cities + (self.primary_region,)

    def enabled_sources(self) -> List[str]:
        return [name for name, source in self.sources.items() if source.enabled]


def _get_bool(environ: Mapping[str, str], key: str, default: bool) -> bool:
    value = environ.get(key)
    if not value:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(environ.get(key, default))
    except (TypeError, ValueError):
        return default


def _get_float(environ: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(environ.get(key, default))
    except (TypeError, ValueError):
        return default


def _get_list(environ: Mapping[str, str], key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = environ.get(key)
    if not value:
        return default
    return tuple(item.strip() for item in value.split(',') if item.strip())


def build_sources(environ: Mapping[str, str]) -> Dict[str, SourceConfig]:
    """Build the Eventbrite and Sympla source definitions."""
    return {
        'eventbrite': SourceConfig(
            name='Eventbrite Brasil',
            base_url='https://www.eventbrite.com.br',
            search_url='https://www.eventbrite.com.br/d/brazil/events/',
            test_url='https://www.eventbrite.com.br/d/brazil/events/',
            rate_limit=_get_float(environ, 'EVENTBRITE_RATE_LIMIT', 2.0),
            selectors={
                'event_card': '[data-testid="event-card"], .event-card, .search-event-card',
                'title': '[data-testid="event-title"], .event-title, h3 a, .event-card__title',
                'date': '[data-testid="event-date"], .event-date, .date-info, .event-card__date',
                'location': '[data-testid="event-location"], .event-location, .venue-info, .event-card__location',
                'image': '[data-testid="event-image"] img, .event-image img, .event-card__image img',
                'price': '[data-testid="event-price"], .event-price, .price-info, .event-card__price',
                'description': '[data-testid="event-description"], .event-description, .event-summary',
                'organizer': '.organizer-name, .event-organizer',
                'link': 'a[href]',
            },
            search_terms=('Ji-Paraná', 'Rondônia', 'Brasil', 'São Paulo'),
            quality_filters=QualityFilters(require_image=True, require_description=True),
            enabled=_get_bool(environ, 'EVENTBRITE_ENABLED', True)
        ),
        'sympla': SourceConfig(
            name='Sympla Brasil',
            base_url='https://www.sympla.com.br',
            search_url='https://www.sympla.com.br/eventos',
            test_url='https://www.sympla.com.br/eventos',
            rate_limit=_get_float(environ, 'SYMPLA_RATE_LIMIT', 1.5),
            selectors={
                'event_card': '.sympla-card, .event-item, .EventCardstyles__Container, [data-testid="event-card"]',
                'title': '.sympla-card__title, .event-title, .EventCardstyles__Title, [data-testid="event-title"]',
                'date': '.sympla-card__date, .event-date, .EventCardstyles__Date, [data-testid="event-date"]',
                'location': '.sympla-card__location, .event-location, .EventCardstyles__Location, [data-testid="event-location"]',
                'image': '.sympla-card__image img, .event-image img, .EventCardstyles__Image img, [data-testid="event-image"] img',
                'price': '.sympla-card__price, .event-price, .EventCardstyles__Price, [data-testid="event-price"]',
                'description': '.sympla-card__description, .event-description, [data-testid="event-description"]',
                'organizer': '.event-organizer, .organizer-name, [data-testid="event-organizer"]',
                'link': 'a[href]',
            },
            search_terms=(
                'Ji-Paraná', 'Porto Velho', 'Ariquemes', 'Cacoal', 'Vilhena',
                'São Paulo', 'Rio de Janeiro', 'Brasília'
            ),
            quality_filters=QualityFilters(
                exclude_keywords=(
                    'teste', 'test', 'exemplo', 'example', 'placeholder', 'lorem ipsum'
                )
            ),
            enabled=_get_bool(environ, 'SYMPLA_ENABLED', True)
        ),
    }


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Resolve settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Settings instance
    """
    if environ is None:
        environ = os.environ

    validation = ValidationRules(
        future_events_only=_get_bool(environ, 'FUTURE_EVENTS_ONLY', True),
        max_days_in_future=_get_int(environ, 'MAX_DAYS_IN_FUTURE', 365)
    )

    return Settings(
        events_table=environ.get('EVENTS_TABLE', 'events'),
        logs_table=environ.get('LOGS_TABLE', 'scraping_logs'),
        aws_region=environ.get('AWS_REGION', 'us-east-1'),
        log_level=environ.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=_get_int(environ, 'SCRAPING_TIMEOUT', 30),
        max_retries=_get_int(environ, 'SCRAPING_MAX_RETRIES', 3),
        batch_size=_get_int(environ, 'BATCH_SIZE', 50),
        reports_dir=environ.get('REPORTS_DIR', '/tmp/reports'),
        primary_region=environ.get('PRIMARY_REGION', 'Ji-Paraná'),
        primary_state=environ.get('PRIMARY_STATE', 'RO'),
        nearby_cities=_get_list(
            environ, 'NEARBY_CITIES', ('Ariquemes', 'Cacoal', 'Rolim de Moura', 'Vilhena')
        ),
        validation=validation,
        sources=build_sources(environ)
    )


def validate_settings(settings: Settings) -> None:
    """
    Check that settings can drive a run.

    Raises:
        ScrapingError: configuration_error describing every problem found
    """
    problems = []

    if not settings.events_table or not settings.logs_table:
        problems.append('EVENTS_TABLE and LOGS_TABLE must be set')

    if not settings.enabled_sources():
        problems.append('at least one scraper must be enabled')

    if settings.batch_size <= 0:
        problems.append('BATCH_SIZE must be positive')

    if problems:
        raise ScrapingError(
            f"Invalid configuration: {', '.join(problems)}",
            ErrorType.CONFIGURATION_ERROR,
            details={'problems': problems}
        )
