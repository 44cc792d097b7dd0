"""
Multi-list watchlist screening

Screens an entity name and country against the fixed, ordered set of
restricted-party lists. Lookups run in parallel; every list always gets
exactly one result in configured order, and a lookup that raises or
misses its deadline is reported as a failed result rather than dropped.

Back-ends:
- LocalWatchlistLookup: fuzzy name matching (rapidfuzz) against list
  entries loaded from YAML
- HttpWatchlistLookup: one HTTP endpoint per list (requests)
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import requests
import yaml
from rapidfuzz import fuzz

from audit_logger import ComplianceAuditLogger
from compliance_errors import ConfigurationError, LookupFailure, ValidationError
from compliance_models import WatchlistResult
from config_manager import WatchlistConfig
from text_utils import contains_control_characters, normalize_name, sanitize_for_logging

logger = logging.getLogger(__name__)

ENTITY_NAME_MIN_LENGTH = 2
ENTITY_NAME_MAX_LENGTH = 200
COUNTRY_MAX_LENGTH = 100


def validate_screening_subject(entity_name: Any, country: Any = None) -> None:
    """Validate the name/country pair submitted for screening

    Raises:
        ValidationError: With the offending field and a fix suggestion
    """
    if not isinstance(entity_name, str):
        raise ValidationError(
            "Entity name must be text",
            field="entity_name",
            code="INVALID_ENTITY_NAME"
        )

    stripped = entity_name.strip()
    if len(stripped) < ENTITY_NAME_MIN_LENGTH:
        raise ValidationError(
            f"Entity name too short ({len(stripped)} chars, minimum {ENTITY_NAME_MIN_LENGTH})",
            field="entity_name",
            code="NAME_TOO_SHORT",
            suggestion=f"Provide a name with at least {ENTITY_NAME_MIN_LENGTH} characters"
        )
    if len(entity_name) > ENTITY_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Entity name too long ({len(entity_name)} chars, maximum {ENTITY_NAME_MAX_LENGTH})",
            field="entity_name",
            code="NAME_TOO_LONG",
            suggestion=f"Shorten the name to {ENTITY_NAME_MAX_LENGTH} characters or less"
        )
    if contains_control_characters(entity_name):
        logger.warning("SECURITY: Control character detected in entity name: %s",
                       sanitize_for_logging(entity_name))
        raise ValidationError(
            "Entity name contains invalid control characters",
            field="entity_name",
            code="CONTROL_CHARACTER",
            suggestion="Remove invisible or control characters from the name"
        )

    if country is None:
        return
    if not isinstance(country, str) or len(country) > COUNTRY_MAX_LENGTH:
        raise ValidationError(
            f"Country must be text of at most {COUNTRY_MAX_LENGTH} characters",
            field="country",
            code="INVALID_COUNTRY"
        )
    if contains_control_characters(country):
        raise ValidationError(
            "Country contains invalid control characters",
            field="country",
            code="CONTROL_CHARACTER"
        )


def has_any_match(results: Sequence[WatchlistResult]) -> bool:
    """True iff any list reported a match"""
    return any(result.match_found for result in results)


# =============================================================================
# Lookup back-ends
# =============================================================================

class WatchlistLookup:
    """Looks an entity up on a single named list

    Implementations return a WatchlistResult for ``list_name`` or raise;
    the screener turns any exception into a failed result.
    """

    def lookup(self, list_name: str, entity_name: str, country: Optional[str] = None) -> WatchlistResult:
        raise NotImplementedError


class LocalWatchlistLookup(WatchlistLookup):
    """Fuzzy name matching against locally held list entries

    Args:
        entries: list name -> entries ({name, aliases, country})
        match_threshold: Minimum token_sort_ratio (0-100) for a match
    """

    def __init__(self, entries: Dict[str, List[Dict[str, Any]]], match_threshold: int = 85):
        self.entries = entries
        self.match_threshold = match_threshold

    @classmethod
    def from_yaml(cls, path: str, match_threshold: int = 85) -> 'LocalWatchlistLookup':
        """Load list entries from a YAML file keyed by list name

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        data_path = Path(path)
        try:
            with open(data_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Watchlist data file not found: {data_path}", field="data_file")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in watchlist data file: {e}", field="data_file")

        lists = data.get('lists', data) if isinstance(data, dict) else None
        if not isinstance(lists, dict):
            raise ConfigurationError("Watchlist data must map list names to entries", field="data_file")

        entries = {name: list(items or []) for name, items in lists.items()}
        logger.info("Loaded %d watchlist entries across %d lists from %s",
                    sum(len(items) for items in entries.values()), len(entries), data_path)
        return cls(entries, match_threshold)

    def lookup(self, list_name: str, entity_name: str, country: Optional[str] = None) -> WatchlistResult:
        if list_name not in self.entries:
            raise LookupFailure(list_name, "no entries loaded for this list")

        query = normalize_name(entity_name)
        best_score = 0.0
        best_entry: Optional[Dict[str, Any]] = None
        best_name = ''

        for entry in self.entries[list_name]:
            names = [entry.get('name', '')] + list(entry.get('aliases') or [])
            for candidate in names:
                if not candidate:
                    continue
                score = fuzz.token_sort_ratio(query, normalize_name(candidate))
                if score > best_score:
                    best_score, best_entry, best_name = score, entry, candidate

        if best_entry is None or best_score < self.match_threshold:
            return WatchlistResult(list_name=list_name, match_found=False)

        reason = f"Name similarity {best_score:.0f}% to '{best_name}'"
        entry_country = best_entry.get('country')
        if country and entry_country:
            if normalize_name(country) == normalize_name(entry_country):
                reason += f"; country corroborated ({entry_country})"
            else:
                reason += f"; listed country {entry_country} differs"
        if best_entry.get('program'):
            reason += f"; program {best_entry['program']}"

        return WatchlistResult(
            list_name=list_name,
            match_found=True,
            matched_entity_name=best_entry.get('name') or best_name,
            match_confidence=round(best_score / 100.0, 4),
            match_reason=reason
        )


class HttpWatchlistLookup(WatchlistLookup):
    """Per-list remote lookup service

    POSTs ``{"entity_name", "country"}`` to the list's URL and expects
    ``{"match_found", "matched_entity_name", "match_confidence",
    "match_reason"}`` back.
    """

    def __init__(self, remote_urls: Dict[str, str], timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.remote_urls = remote_urls
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, list_name: str, entity_name: str, country: Optional[str] = None) -> WatchlistResult:
        url = self.remote_urls.get(list_name)
        if not url:
            raise LookupFailure(list_name, "no remote endpoint configured")

        try:
            response = self.session.post(
                url,
                json={'entity_name': entity_name, 'country': country},
                timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise LookupFailure(list_name, f"remote lookup failed: {e.__class__.__name__}")
        except ValueError:
            raise LookupFailure(list_name, "remote lookup returned invalid JSON")

        if not isinstance(payload, dict) or 'match_found' not in payload:
            raise LookupFailure(list_name, "remote lookup returned an unexpected payload")

        confidence = payload.get('match_confidence')
        return WatchlistResult(
            list_name=list_name,
            match_found=bool(payload['match_found']),
            matched_entity_name=payload.get('matched_entity_name'),
            match_confidence=float(confidence) if confidence is not None else None,
            match_reason=payload.get('match_reason')
        )


# =============================================================================
# Screener
# =============================================================================

class WatchlistScreener:
    """Fans a screening request out over every configured list

    Args:
        lookup: Back-end answering single-list lookups
        config: List names (output order), timeout and pool size
        audit_logger: Receives WATCHLIST_LOOKUP_FAILED events
    """

    def __init__(
        self,
        lookup: WatchlistLookup,
        config: Optional[WatchlistConfig] = None,
        audit_logger: Optional[ComplianceAuditLogger] = None
    ):
        self.lookup = lookup
        self.config = config or WatchlistConfig()
        self.audit_logger = audit_logger

    @property
    def list_names(self) -> List[str]:
        return list(self.config.lists)

    def _timed_lookup(self, list_name: str, entity_name: str, country: Optional[str]) -> WatchlistResult:
        start = time.perf_counter()
        result = self.lookup.lookup(list_name, entity_name, country)
        if not isinstance(result, WatchlistResult):
            raise LookupFailure(list_name, f"lookup returned {type(result).__name__}")
        if result.list_name != list_name:
            raise LookupFailure(list_name, f"lookup answered for '{result.list_name}'")
        return replace(result, processing_time_ms=round((time.perf_counter() - start) * 1000, 2))

    def _failed(self, list_name: str, reason: str, entity_name: str) -> WatchlistResult:
        logger.warning("Watchlist lookup failed for %s: %s", list_name, sanitize_for_logging(reason))
        if self.audit_logger:
            self.audit_logger.log_lookup_failure(list_name, reason, entity_name=entity_name)
        return WatchlistResult(
            list_name=list_name,
            match_found=False,
            match_reason=f"Lookup failed: {reason}",
            lookup_failed=True
        )

    def screen(self, entity_name: str, country: Optional[str] = None,
               timeout: Optional[float] = None) -> List[WatchlistResult]:
        """Screen an entity against every list

        Args:
            entity_name: Name to screen
            country: Optional country used to corroborate matches
            timeout: Seconds for the whole batch (defaults to config)

        Returns:
            One WatchlistResult per configured list, in configured order

        Raises:
            ValidationError: If entity_name or country is malformed
        """
        validate_screening_subject(entity_name, country)
        timeout = self.config.lookup_timeout_seconds if timeout is None else timeout
        if timeout <= 0:
            raise ValidationError("Timeout must be positive", field="timeout", code="INVALID_TIMEOUT")

        name = entity_name.strip()
        logger.info("Screening %s against %d lists", sanitize_for_logging(name), len(self.config.lists))

        executor = ThreadPoolExecutor(max_workers=max(1, min(self.config.max_workers, len(self.config.lists))))
        try:
            futures = [
                (list_name, executor.submit(self._timed_lookup, list_name, name, country))
                for list_name in self.config.lists
            ]
            deadline = time.monotonic() + timeout

            results = []
            for list_name, future in futures:
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    results.append(future.result(timeout=remaining))
                except FutureTimeoutError:
                    future.cancel()
                    results.append(self._failed(list_name, f"timed out after {timeout:g}s", name))
                except LookupFailure as e:
                    results.append(self._failed(list_name, e.reason, name))
                except Exception as e:
                    results.append(self._failed(list_name, f"{e.__class__.__name__}: {e}", name))
        finally:
            # Hung lookups are abandoned, never waited on
            executor.shutdown(wait=False, cancel_futures=True)

        matched = [r.list_name for r in results if r.match_found]
        if matched:
            logger.info("Watchlist matches for %s: %s", sanitize_for_logging(name), ", ".join(matched))
        return results

    has_any_match = staticmethod(has_any_match)


def build_lookup(config: WatchlistConfig, base_dir: Optional[Path] = None) -> WatchlistLookup:
    """Choose the back-end from configuration

    Remote URLs win when configured; otherwise the local data file is used.
    """
    if config.remote_urls:
        return HttpWatchlistLookup(config.remote_urls, timeout=config.lookup_timeout_seconds)

    data_path = Path(config.data_file)
    if not data_path.is_absolute() and base_dir is not None:
        data_path = base_dir / data_path
    return LocalWatchlistLookup.from_yaml(str(data_path), config.match_threshold)
