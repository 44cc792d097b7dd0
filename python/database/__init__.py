"""
Database Package for the Compliance Screening Core

This package provides:
- SQLAlchemy ORM models for screening records, list results and audit logs
- Session scopes and provider settings read from config.yaml
- Repository pattern with version-checked record writes
- The persistence-backed screening service used by the API
"""

from database.models import (
    Base,
    RecordStatus,
    AuditAction,
    ScreeningRecordRow,
    ScreeningListResult,
    AuditLog,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    ScreeningRecordRepository,
    AuditRepository,
)
from database.screening_service import ComplianceScreeningService

__all__ = [
    # Base
    'Base',
    'RecordStatus',
    'AuditAction',
    # Models
    'ScreeningRecordRow',
    'ScreeningListResult',
    'AuditLog',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Repositories
    'ScreeningRecordRepository',
    'AuditRepository',
    # Service
    'ComplianceScreeningService',
]
