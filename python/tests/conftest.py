"""
Shared fixtures for the compliance core tests.

Components are built from the default configuration dataclasses so the
tests do not depend on config.yaml. Watchlist lookups are replaced by an
in-memory fake.
"""

import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from audit_logger import ComplianceAuditLogger
from classification_rules import ClassificationRules
from compliance_models import EndUser, TransactionContext, WatchlistResult
from compliance_workflow import ComplianceWorkflow
from config_manager import ConfigManager, DEFAULT_WATCHLISTS, WatchlistConfig
from risk_aggregator import RiskAggregator
from watchlist_screener import WatchlistLookup, WatchlistScreener


class FakeLookup(WatchlistLookup):
    """Answers from a table: list name -> WatchlistResult, exception or delay in seconds."""

    def __init__(self, answers: Optional[Dict[str, Any]] = None):
        self.answers = answers or {}
        self.calls = []

    def lookup(self, list_name, entity_name, country=None):
        self.calls.append((list_name, entity_name, country))
        answer = self.answers.get(list_name)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, (int, float)) and not isinstance(answer, bool):
            time.sleep(answer)
            return WatchlistResult(list_name=list_name, match_found=False)
        if isinstance(answer, WatchlistResult):
            return answer
        return WatchlistResult(list_name=list_name, match_found=False)


def match_on(list_name: str, entity: str = "Caspian Horizon Trading LLC") -> WatchlistResult:
    return WatchlistResult(
        list_name=list_name,
        match_found=True,
        matched_entity_name=entity,
        match_confidence=0.97,
        match_reason="Name similarity 97%"
    )


def clean_results():
    return [WatchlistResult(list_name=name, match_found=False) for name in DEFAULT_WATCHLISTS]


@pytest.fixture
def config():
    """Defaults-only configuration."""
    return ConfigManager.from_defaults()


@pytest.fixture
def audit_logger():
    return ComplianceAuditLogger(enable_file=False)


@pytest.fixture
def classifier(config):
    return ClassificationRules(config.classification)


@pytest.fixture
def risk(config):
    return RiskAggregator(config.risk)


@pytest.fixture
def workflow(config, risk, audit_logger):
    return ComplianceWorkflow(config.workflow, risk, audit_logger)


@pytest.fixture
def fake_lookup():
    return FakeLookup()


@pytest.fixture
def screener(fake_lookup, audit_logger):
    return WatchlistScreener(fake_lookup, WatchlistConfig(lookup_timeout_seconds=2.0), audit_logger)


@pytest.fixture
def end_user():
    return EndUser(
        company_name="Penang Precision Devices Sdn Bhd",
        registration_number="201901012345",
        country="Malaysia",
        address="Bayan Lepas, Penang",
        business_type="Electronics manufacturing"
    )


@pytest.fixture
def transaction():
    return TransactionContext(
        value=25000,
        currency="USD",
        product_categories=["electronics"],
        end_use_declaration="Assembly of consumer routers for retail sale",
        frequency="quarterly"
    )


@pytest.fixture
def new_record(workflow, end_user, transaction):
    """A pending record with complete end-user details and neutral scores."""
    return workflow.create_record("SCR-001", "SHP-001", end_user, transaction)


@pytest.fixture
def ready_record(workflow, new_record):
    """A record passing every approval checklist item."""
    record = workflow.record_watchlist_run(new_record, clean_results(), "analyst.tan")
    return workflow.assign_officer(record, "officer.lee", "supervisor.ng")
