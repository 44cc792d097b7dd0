"""
Configuration Management Module
Loads and validates configuration from config.yaml

Every rule table the compliance core uses (strategic categories, HS-code
prefixes, keyword sets, watchlist names, risk thresholds, escalation
limits) lives here as named configuration data, so components can be
built with substituted rule sets.
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

from compliance_errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_WATCHLISTS = [
    'entity_list',
    'sdn_list',
    'unverified_list',
    'military_end_user',
    'eu_consolidated',
    'un_sanctions',
    'bis_denied_persons',
]


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "compliance_user"
    password: str = "compliance_password"
    name: str = "compliance_database"
    url: str = ""
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False


@dataclass
class ClassificationConfig:
    """Strategic / AI classification rule tables"""
    strategic_categories: List[str] = field(default_factory=lambda: [
        'military_grade', 'high_performance_computing'
    ])
    strategic_category_prefixes: List[str] = field(default_factory=lambda: ['ai_accelerator_'])
    strategic_hs_prefixes: List[str] = field(default_factory=lambda: [
        '8542.31', '8542.32', '8542.33', '8473.30'
    ])
    strategic_end_use_keywords: List[str] = field(default_factory=lambda: ['military', 'defense'])
    ai_categories: List[str] = field(default_factory=lambda: ['neural_processing'])
    ai_category_prefixes: List[str] = field(default_factory=lambda: ['ai_accelerator_'])
    ai_keywords: List[str] = field(default_factory=lambda: [
        'ai', 'neural', 'machine learning', 'deep learning', 'gpu', 'tensor'
    ])
    known_categories: List[str] = field(default_factory=lambda: [
        'standard_ic_asics',
        'memory_nand_dram',
        'discrete_semiconductors',
        'pcbas_modules',
        'ai_accelerator_gpu_tpu_npu',
        'neural_processing',
        'military_grade',
        'high_performance_computing',
        'unsure',
    ])
    default_category: str = 'standard_ic_asics'


@dataclass
class ReconciliationConfig:
    """Multi-document field reconciliation settings"""
    document_priority: Dict[str, int] = field(default_factory=lambda: {
        'Commercial Invoice': 1,
        'Bill of Lading': 2,
        'Certificate of Origin': 3,
        'Packing List': 4,
        'Insurance Certificate': 5,
        'Import Permit': 6,
        'Letter of Credit': 7,
        'Delivery Order': 8,
        'Technical Documentation': 9,
    })
    default_priority: int = 10
    product_field_map: Dict[str, str] = field(default_factory=lambda: {
        'product_description': 'description',
        'semiconductor_category': 'category',
        'technology_origin': 'technology_origin',
        'hs_code': 'hs_code',
        'quantity': 'quantity',
        'quantity_unit': 'unit',
        'unit_price': 'unit_price',
        'commercial_value': 'commercial_value',
        'end_use_purpose': 'end_use_purpose',
    })
    min_confidence: float = 0.0
    max_confidence: float = 1.0


@dataclass
class WatchlistConfig:
    """Watchlist screening configuration"""
    lists: List[str] = field(default_factory=lambda: list(DEFAULT_WATCHLISTS))
    lookup_timeout_seconds: float = 10.0
    max_workers: int = 7
    match_threshold: int = 85
    data_file: str = "watchlist_data/watchlists.yaml"
    remote_urls: Dict[str, str] = field(default_factory=dict)


@dataclass
class RiskConfig:
    """Risk aggregation thresholds and category-score tables"""
    high_threshold: float = 7.0
    medium_threshold: float = 5.0
    neutral_score: int = 5
    min_score: int = 1
    max_score: int = 10
    high_risk_countries: List[str] = field(default_factory=lambda: [
        'Iran', 'North Korea', 'Syria', 'Cuba', 'Russia', 'Belarus'
    ])
    medium_risk_countries: List[str] = field(default_factory=lambda: [
        'China', 'Venezuela', 'Myanmar', 'Sudan'
    ])
    geographic_scores: Dict[str, int] = field(default_factory=lambda: {
        'high': 9, 'medium': 6, 'low': 3
    })
    strategic_product_keywords: List[str] = field(default_factory=lambda: [
        'semiconductors', 'encryption', 'military', 'dual_use'
    ])
    controlled_product_keywords: List[str] = field(default_factory=lambda: [
        'electronics', 'software', 'chemicals'
    ])
    product_scores: Dict[str, int] = field(default_factory=lambda: {
        'strategic': 8, 'controlled': 5, 'low': 2
    })
    # (exclusive lower bound, score), checked from the top down
    transaction_value_bands: List[List[float]] = field(default_factory=lambda: [
        [1000000, 8], [100000, 6], [10000, 4]
    ])
    transaction_base_score: int = 2
    manual_review_threshold: float = 8.0
    manual_review_value: float = 100000.0
    manual_review_countries: List[str] = field(default_factory=lambda: [
        'Iran', 'North Korea', 'Syria', 'Cuba', 'Russia', 'Belarus', 'China'
    ])


@dataclass
class WorkflowConfig:
    """Compliance workflow gates"""
    min_end_use_declaration_length: int = 20
    require_mandatory_documents: bool = False
    require_enhanced_dd_completion: bool = False
    screening_document_types: List[str] = field(default_factory=lambda: [
        'end_user_certificate',
        'business_license',
        'reference_letter',
        'bank_reference',
        'trade_reference',
        'other',
    ])
    mandatory_document_types: List[str] = field(default_factory=lambda: ['end_user_certificate'])


@dataclass
class ShipmentConfig:
    """Shipment aggregation and escalation settings"""
    escalation_value_threshold: float = 100000.0
    default_currency: str = "USD"
    escalated_priority: str = "Urgent"
    high_value_document: Dict[str, Any] = field(default_factory=lambda: {
        'id': 'insurance_cert',
        'type': 'Insurance Certificate',
        'description': 'For coverage protection on high-value shipment',
        'mandatory': False,
        'reason': 'High-Value Shipment',
    })
    strategic_documents: List[Dict[str, Any]] = field(default_factory=lambda: [
        {
            'id': 'technical_docs',
            'type': 'Technical Documentation',
            'description': 'Product specifications required for strategic items',
            'mandatory': True,
            'reason': 'Strategic Items Detected',
        },
        {
            'id': 'import_permit',
            'type': 'Import Permit STA 2010',
            'description': 'If you have it (strategic trade authorization)',
            'mandatory': False,
            'reason': 'Strategic Items Detected',
        },
    ])


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/compliance.log"
    audit_directory: str = "logs"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AlgorithmConfig:
    """Rule-set version information"""
    version: str = "1.0.0"
    name: str = "Compliance Screening Rule Engine"
    last_updated: str = "2024-01-01"


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None, load_file: bool = True):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
            load_file: Set to False to keep the built-in defaults
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.classification: ClassificationConfig = ClassificationConfig()
        self.reconciliation: ReconciliationConfig = ReconciliationConfig()
        self.watchlist: WatchlistConfig = WatchlistConfig()
        self.risk: RiskConfig = RiskConfig()
        self.workflow: WorkflowConfig = WorkflowConfig()
        self.shipment: ShipmentConfig = ShipmentConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.algorithm: AlgorithmConfig = AlgorithmConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if not load_file:
            return
        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    @classmethod
    def from_defaults(cls) -> 'ConfigManager':
        """Build a standalone instance holding only the built-in defaults"""
        return cls(load_file=False)

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_classification()
        self._parse_reconciliation()
        self._parse_watchlist()
        self._parse_risk()
        self._parse_workflow()
        self._parse_shipment()
        self._parse_logging()
        self._parse_algorithm()
        self._parse_database()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            url=cfg.get('url') or self.database.url,
            pool_size=cfg.get('pool_size', self.database.pool_size),
            max_overflow=cfg.get('max_overflow', self.database.max_overflow),
            echo=bool(cfg.get('echo', self.database.echo))
        )

    def _parse_classification(self) -> None:
        """Parse classification rule tables"""
        cfg = self._section('classification')
        defaults = self.classification
        self.classification = ClassificationConfig(
            strategic_categories=cfg.get('strategic_categories', defaults.strategic_categories),
            strategic_category_prefixes=cfg.get('strategic_category_prefixes',
                                                defaults.strategic_category_prefixes),
            strategic_hs_prefixes=[str(p) for p in cfg.get('strategic_hs_prefixes',
                                                           defaults.strategic_hs_prefixes)],
            strategic_end_use_keywords=cfg.get('strategic_end_use_keywords',
                                               defaults.strategic_end_use_keywords),
            ai_categories=cfg.get('ai_categories', defaults.ai_categories),
            ai_category_prefixes=cfg.get('ai_category_prefixes', defaults.ai_category_prefixes),
            ai_keywords=cfg.get('ai_keywords', defaults.ai_keywords),
            known_categories=cfg.get('known_categories', defaults.known_categories),
            default_category=cfg.get('default_category', defaults.default_category)
        )

    def _parse_reconciliation(self) -> None:
        """Parse reconciliation configuration"""
        cfg = self._section('reconciliation')
        defaults = self.reconciliation
        self.reconciliation = ReconciliationConfig(
            document_priority=cfg.get('document_priority', defaults.document_priority),
            default_priority=cfg.get('default_priority', defaults.default_priority),
            product_field_map=cfg.get('product_field_map', defaults.product_field_map),
            min_confidence=float(cfg.get('min_confidence', defaults.min_confidence)),
            max_confidence=float(cfg.get('max_confidence', defaults.max_confidence))
        )

    def _parse_watchlist(self) -> None:
        """Parse watchlist configuration"""
        cfg = self._section('watchlist')
        defaults = self.watchlist
        self.watchlist = WatchlistConfig(
            lists=cfg.get('lists', defaults.lists),
            lookup_timeout_seconds=float(cfg.get('lookup_timeout_seconds',
                                                 defaults.lookup_timeout_seconds)),
            max_workers=cfg.get('max_workers', defaults.max_workers),
            match_threshold=cfg.get('match_threshold', defaults.match_threshold),
            data_file=cfg.get('data_file', defaults.data_file),
            remote_urls=cfg.get('remote_urls', defaults.remote_urls) or {}
        )

    def _parse_risk(self) -> None:
        """Parse risk configuration"""
        cfg = self._section('risk')
        defaults = self.risk
        self.risk = RiskConfig(
            high_threshold=float(cfg.get('high_threshold', defaults.high_threshold)),
            medium_threshold=float(cfg.get('medium_threshold', defaults.medium_threshold)),
            neutral_score=cfg.get('neutral_score', defaults.neutral_score),
            min_score=cfg.get('min_score', defaults.min_score),
            max_score=cfg.get('max_score', defaults.max_score),
            high_risk_countries=cfg.get('high_risk_countries', defaults.high_risk_countries),
            medium_risk_countries=cfg.get('medium_risk_countries', defaults.medium_risk_countries),
            geographic_scores=cfg.get('geographic_scores', defaults.geographic_scores),
            strategic_product_keywords=cfg.get('strategic_product_keywords',
                                               defaults.strategic_product_keywords),
            controlled_product_keywords=cfg.get('controlled_product_keywords',
                                                defaults.controlled_product_keywords),
            product_scores=cfg.get('product_scores', defaults.product_scores),
            transaction_value_bands=cfg.get('transaction_value_bands',
                                            defaults.transaction_value_bands),
            transaction_base_score=cfg.get('transaction_base_score',
                                           defaults.transaction_base_score),
            manual_review_threshold=float(cfg.get('manual_review_threshold',
                                                  defaults.manual_review_threshold)),
            manual_review_value=float(cfg.get('manual_review_value',
                                              defaults.manual_review_value)),
            manual_review_countries=cfg.get('manual_review_countries',
                                            defaults.manual_review_countries)
        )

    def _parse_workflow(self) -> None:
        """Parse workflow configuration"""
        cfg = self._section('workflow')
        defaults = self.workflow
        self.workflow = WorkflowConfig(
            min_end_use_declaration_length=cfg.get('min_end_use_declaration_length',
                                                   defaults.min_end_use_declaration_length),
            require_mandatory_documents=cfg.get('require_mandatory_documents',
                                                defaults.require_mandatory_documents),
            require_enhanced_dd_completion=cfg.get('require_enhanced_dd_completion',
                                                   defaults.require_enhanced_dd_completion),
            screening_document_types=cfg.get('screening_document_types',
                                             defaults.screening_document_types),
            mandatory_document_types=cfg.get('mandatory_document_types',
                                             defaults.mandatory_document_types)
        )

    def _parse_shipment(self) -> None:
        """Parse shipment configuration"""
        cfg = self._section('shipment')
        defaults = self.shipment
        self.shipment = ShipmentConfig(
            escalation_value_threshold=float(cfg.get('escalation_value_threshold',
                                                     defaults.escalation_value_threshold)),
            default_currency=cfg.get('default_currency', defaults.default_currency),
            escalated_priority=cfg.get('escalated_priority', defaults.escalated_priority),
            high_value_document=cfg.get('high_value_document', defaults.high_value_document),
            strategic_documents=cfg.get('strategic_documents', defaults.strategic_documents)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', 'logs/compliance.log'),
            audit_directory=cfg.get('audit_directory', 'logs'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_algorithm(self) -> None:
        """Parse rule-set version configuration"""
        cfg = self._section('algorithm')
        self.algorithm = AlgorithmConfig(
            version=str(cfg.get('version', '1.0.0')),
            name=cfg.get('name', 'Compliance Screening Rule Engine'),
            last_updated=str(cfg.get('last_updated', '2024-01-01'))
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'classification': {
                'strategic_categories': self.classification.strategic_categories,
                'strategic_category_prefixes': self.classification.strategic_category_prefixes,
                'strategic_hs_prefixes': self.classification.strategic_hs_prefixes,
                'strategic_end_use_keywords': self.classification.strategic_end_use_keywords,
                'ai_categories': self.classification.ai_categories,
                'ai_category_prefixes': self.classification.ai_category_prefixes,
                'ai_keywords': self.classification.ai_keywords
            },
            'watchlist': {
                'lists': self.watchlist.lists,
                'lookup_timeout_seconds': self.watchlist.lookup_timeout_seconds,
                'match_threshold': self.watchlist.match_threshold
            },
            'risk': {
                'high_threshold': self.risk.high_threshold,
                'medium_threshold': self.risk.medium_threshold,
                'neutral_score': self.risk.neutral_score
            },
            'workflow': {
                'min_end_use_declaration_length': self.workflow.min_end_use_declaration_length,
                'require_mandatory_documents': self.workflow.require_mandatory_documents,
                'require_enhanced_dd_completion': self.workflow.require_enhanced_dd_completion
            },
            'shipment': {
                'escalation_value_threshold': self.shipment.escalation_value_threshold,
                'default_currency': self.shipment.default_currency,
                'escalated_priority': self.shipment.escalated_priority
            },
            'algorithm': {
                'version': self.algorithm.version,
                'name': self.algorithm.name,
                'last_updated': self.algorithm.last_updated
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name,
                'url_configured': bool(self.database.url)
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: If any section is inconsistent
        """
        errors = []

        lists = self.watchlist.lists
        if not lists:
            errors.append("watchlist.lists must not be empty")
        elif len(set(lists)) != len(lists):
            errors.append("watchlist.lists contains duplicate names")
        if self.watchlist.lookup_timeout_seconds <= 0:
            errors.append("watchlist.lookup_timeout_seconds must be positive")
        if self.watchlist.max_workers < 1:
            errors.append("watchlist.max_workers must be at least 1")
        if not 0 <= self.watchlist.match_threshold <= 100:
            errors.append("watchlist.match_threshold must be between 0 and 100")

        risk = self.risk
        if risk.min_score >= risk.max_score:
            errors.append("risk.min_score must be lower than risk.max_score")
        if not risk.min_score <= risk.neutral_score <= risk.max_score:
            errors.append("risk.neutral_score must lie within the score range")
        if risk.medium_threshold >= risk.high_threshold:
            errors.append("risk.medium_threshold must be lower than risk.high_threshold")

        if self.reconciliation.min_confidence >= self.reconciliation.max_confidence:
            errors.append("reconciliation.min_confidence must be lower than max_confidence")

        if self.workflow.min_end_use_declaration_length < 0:
            errors.append("workflow.min_end_use_declaration_length must not be negative")

        if self.shipment.escalation_value_threshold < 0:
            errors.append("shipment.escalation_value_threshold must not be negative")
        currency = self.shipment.default_currency
        if not (isinstance(currency, str) and len(currency) == 3 and currency.isalpha()):
            errors.append("shipment.default_currency must be a 3-letter code")

        if errors:
            for message in errors:
                logger.error(f"Configuration error: {message}")
            raise ConfigurationError("; ".join(errors))


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
