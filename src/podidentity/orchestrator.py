"""Concurrent reconciliation of a full list of association requirements.

Requirements are independent, so each one runs in its own asyncio task.
Results are written into a pre-sized list at the requirement's index, which
keeps the output in input order regardless of completion order. Failures
are collected after the join; any failure fails the whole pass and nothing
already applied is rolled back.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import Counter
from collections.abc import Sequence

from .errors import ReconciliationCancelledError, ReconciliationError
from .models import PodIdentityAssociation, ensure_unique_identities
from .reconciler import AddonPodIdentityAssociation, AssociationReconciler

logger = logging.getLogger(__name__)


class ReconciliationOrchestrator:
    """Fans requirements out to an AssociationReconciler."""

    def __init__(self, reconciler: AssociationReconciler, max_concurrency: int = 0) -> None:
        """Initialize the orchestrator.

        Args:
            reconciler: Per-requirement reconciler.
            max_concurrency: Cap on in-flight requirements; 0 means unbounded.
        """
        if max_concurrency < 0:
            raise ValueError("max_concurrency cannot be negative")

        self._reconciler = reconciler
        self._max_concurrency = max_concurrency

    async def reconcile(
        self,
        associations: Sequence[PodIdentityAssociation],
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_seconds: float | None = None,
    ) -> list[AddonPodIdentityAssociation]:
        """Reconcile every requirement and return results in input order.

        Args:
            associations: Requirements with unique (namespace, service account).
            cancel_event: Once set, no further requirement is dispatched.
            timeout_seconds: Deadline for the whole pass.

        Returns:
            One AddonPodIdentityAssociation per requirement, same order.

        Raises:
            ValueError: If two requirements share an identity key.
            ReconciliationCancelledError: If cancelled or past the deadline.
            ReconciliationError: The first failure by input position.
        """
        if not associations:
            return []

        ensure_unique_identities(associations)

        start_time = time.monotonic()
        deadline = asyncio.timeout(timeout_seconds)
        try:
            async with deadline:
                results = await self._run_all(associations, cancel_event)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            raise ReconciliationCancelledError(
                f"reconciliation did not complete within {timeout_seconds}s"
            ) from e

        actions = Counter(result.action.value for result in results)
        logger.info(
            "Reconciled pod identity associations",
            extra={
                "cluster": self._reconciler.cluster_name,
                "total": len(results),
                "created": actions.get("create", 0),
                "updated": actions.get("update", 0),
                "reused": actions.get("reuse", 0),
                "duration_seconds": round(time.monotonic() - start_time, 3),
            },
        )
        return results

    async def _run_all(
        self,
        associations: Sequence[PodIdentityAssociation],
        cancel_event: asyncio.Event | None,
    ) -> list[AddonPodIdentityAssociation]:
        results: list[AddonPodIdentityAssociation | None] = [None] * len(associations)
        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None

        async def run_one(index: int, association: PodIdentityAssociation) -> None:
            async with semaphore if semaphore is not None else contextlib.nullcontext():
                if cancel_event is not None and cancel_event.is_set():
                    raise ReconciliationCancelledError(
                        "reconciliation cancelled before dispatch",
                        namespace=association.namespace,
                        service_account=association.service_account_name,
                    )
                results[index] = await self._reconciler.reconcile(association)

        outcomes = await asyncio.gather(
            *(run_one(i, association) for i, association in enumerate(associations)),
            return_exceptions=True,
        )

        failures: list[tuple[int, BaseException]] = [
            (index, outcome)
            for index, outcome in enumerate(outcomes)
            if isinstance(outcome, BaseException)
        ]
        if failures:
            for index, error in failures:
                association = associations[index]
                logger.error(
                    "Failed to reconcile pod identity association",
                    extra={
                        "namespace": association.namespace,
                        "service_account": association.service_account_name,
                        "error": str(error),
                        "error_type": type(error).__name__,
                    },
                )
            raise self._representative_error(failures)

        # Every slot is filled when no task failed
        return [result for result in results if result is not None]

    @staticmethod
    def _representative_error(failures: list[tuple[int, BaseException]]) -> BaseException:
        """Pick the error surfaced for a failed pass.

        Cancellation only wins when nothing else went wrong, so a real
        failure is never hidden behind "cancelled".
        """
        for _, error in failures:
            if isinstance(error, ReconciliationError) and not isinstance(
                error, ReconciliationCancelledError
            ):
                return error
        for _, error in failures:
            if not isinstance(error, asyncio.CancelledError):
                return error
        return ReconciliationCancelledError("reconciliation cancelled")
