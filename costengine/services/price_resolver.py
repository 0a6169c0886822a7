"""
Price resolver service.
Deduplicates cost component lookups by filter key, queries the pricing catalog
in concurrent batches, and writes the selected prices back onto the project.
"""
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict
import asyncio
import logging

from costengine.core.errors import (
    CatalogQueryError,
    CatalogTimeoutError,
    CatalogUnavailableError,
    ErrorKind,
    PricingError,
    ResolutionTimeoutError,
)
from costengine.domain.cost_models import CostComponent, PriceStatus, Project, walk_resources
from costengine.pricing.catalog import CatalogResult, PriceQuery, select_price
from costengine.pricing.session import PricingSession
from costengine.resilience.retry import build_retrying


logger = logging.getLogger(__name__)


# Batch failures that stay local to the batch; anything else aborts the pass
BATCH_LOCAL_ERRORS = (CatalogUnavailableError, CatalogQueryError, CatalogTimeoutError)


@dataclass
class ResolutionReport:
    """Statistics for one resolution pass."""
    components: int = 0
    distinct_keys: int = 0
    batches: int = 0
    catalog_calls: int = 0
    resolved_keys: int = 0
    unresolved_keys: int = 0
    failed_batches: int = 0
    non_unique_keys: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class _BatchOutcome:
    results: Optional[List[CatalogResult]] = None
    error: Optional[PricingError] = None


class PriceResolver:
    """Resolves unit prices for every pending cost component of a project."""

    def __init__(self, session: PricingSession):
        """
        Initialize the resolver.

        Args:
            session: Pricing session providing the catalog and resolver limits
        """
        self.session = session
        self.settings = session.settings

    def collect(self, project: Project) -> Dict[str, List[CostComponent]]:
        """
        Group the components that still need a price by filter key.

        Resolved components and everything under a skipped or no-price
        resource are left out. Keys keep the order they are first seen in.
        """
        key_map: Dict[str, List[CostComponent]] = {}
        for resource, counted in walk_resources(project.resources):
            if not counted:
                continue
            for component in resource.cost_components:
                if component.price_status == PriceStatus.RESOLVED:
                    continue
                key_map.setdefault(component.filter_key, []).append(component)
        return key_map

    async def resolve(self, project: Project) -> ResolutionReport:
        """
        Resolve prices for a project in place.

        Args:
            project: Project whose cost components need prices

        Returns:
            ResolutionReport for this pass

        Raises:
            InvalidCredentialError: If the catalog rejects the credential;
                no price from this pass is written
            ResolutionTimeoutError: If the deadline expires; completed batches
                are written and the rest are marked unresolved
        """
        key_map = self.collect(project)
        report = ResolutionReport(
            components=sum(len(components) for components in key_map.values()),
            distinct_keys=len(key_map),
        )
        if not key_map:
            logger.info(f"All prices for project '{project.name}' are already resolved")
            return report

        queries = [PriceQuery.for_component(components[0]) for components in key_map.values()]
        batch_size = self.settings.batch_size
        batches = [queries[i:i + batch_size] for i in range(0, len(queries), batch_size)]
        report.batches = len(batches)

        logger.info(
            f"Resolving {report.components} cost components for project '{project.name}' "
            f"({report.distinct_keys} distinct filters, {report.batches} batches)"
        )

        calls_before = self.session.catalog_calls
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        tasks = {
            asyncio.ensure_future(self._run_batch(batch, semaphore)): batch
            for batch in batches
        }

        try:
            done, pending = await asyncio.wait(
                tasks,
                timeout=self.settings.deadline_seconds,
                return_when=asyncio.FIRST_EXCEPTION
            )
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        fatal = next(
            (task.exception() for task in done if not task.cancelled() and task.exception()),
            None
        )
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        report.catalog_calls = self.session.catalog_calls - calls_before

        if fatal is not None:
            logger.error(f"Price resolution for project '{project.name}' aborted: {fatal}")
            raise fatal

        for task, batch in tasks.items():
            if task in done:
                self._apply(batch, task.result(), key_map, report)
            else:
                report.failed_batches += 1
                self._mark_batch(
                    batch,
                    key_map,
                    report,
                    ErrorKind.TIMEOUT,
                    f"Pricing deadline of {self.settings.deadline_seconds}s expired before the query completed"
                )

        logger.info(
            f"Resolved {report.resolved_keys}/{report.distinct_keys} price filters for project "
            f"'{project.name}' with {report.catalog_calls} catalog calls "
            f"({report.unresolved_keys} unresolved, {report.non_unique_keys} non-unique)"
        )

        if pending:
            raise ResolutionTimeoutError(
                f"Pricing deadline of {self.settings.deadline_seconds}s expired with "
                f"{len(pending)} of {report.batches} batches outstanding",
                report=report
            )
        return report

    async def _run_batch(self, batch: List[PriceQuery], semaphore: asyncio.Semaphore) -> _BatchOutcome:
        async with semaphore:
            try:
                async for attempt in build_retrying(
                    self.settings.retry_attempts,
                    self.settings.retry_backoff_seconds,
                    self.settings.retry_backoff_max_seconds
                ):
                    with attempt:
                        results = await self.session.query(batch)
            except BATCH_LOCAL_ERRORS as error:
                logger.warning(f"Pricing batch of {len(batch)} queries failed: {error}")
                return _BatchOutcome(error=error)

        if len(results) != len(batch):
            return _BatchOutcome(error=CatalogUnavailableError(
                f"Catalog returned {len(results)} results for {len(batch)} queries"
            ))
        return _BatchOutcome(results=results)

    def _apply(
        self,
        batch: List[PriceQuery],
        outcome: _BatchOutcome,
        key_map: Dict[str, List[CostComponent]],
        report: ResolutionReport
    ) -> None:
        if outcome.error is not None:
            report.failed_batches += 1
            self._mark_batch(batch, key_map, report, outcome.error.kind, str(outcome.error))
            return

        for query, result in zip(batch, outcome.results):
            components = key_map[query.key]

            if result.error:
                self._mark_key(components, report, ErrorKind.CATALOG_UNAVAILABLE, result.error)
                continue

            selection = select_price(result.rows, query.price_filter)
            if selection.row is None:
                logger.warning(f"No price found for '{components[0].name}' ({query.key})")
                self._mark_key(
                    components,
                    report,
                    ErrorKind.NO_MATCH,
                    "No catalog price matches the product and price filters"
                )
                continue

            if selection.non_unique:
                report.non_unique_keys += 1
                logger.warning(
                    f"{selection.candidates} prices match '{components[0].name}' ({query.key}); "
                    f"using the first in catalog order"
                )

            row = selection.row
            for component in components:
                component.set_price(
                    row.price,
                    price_hash=row.price_hash,
                    currency=row.currency,
                    non_unique=selection.non_unique
                )
            report.resolved_keys += 1

    def _mark_batch(
        self,
        batch: List[PriceQuery],
        key_map: Dict[str, List[CostComponent]],
        report: ResolutionReport,
        kind: ErrorKind,
        reason: str
    ) -> None:
        for query in batch:
            self._mark_key(key_map[query.key], report, kind, reason)

    @staticmethod
    def _mark_key(
        components: List[CostComponent],
        report: ResolutionReport,
        kind: ErrorKind,
        reason: str
    ) -> None:
        for component in components:
            component.mark_unresolved(kind, reason)
        report.unresolved_keys += 1
