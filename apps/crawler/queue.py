"""
Durable crawl queue backed by the crawler_queue table.

QueueStore is the only code that changes QueueItem.status. Every
multi-row mutation runs inside transaction.atomic(), and single-item
status changes are conditional UPDATEs on the expected current status,
which makes repeated finalization a no-op.
"""

import logging
from datetime import timedelta
from typing import Dict, Iterable, Optional

from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from .models import CrawlRun, QueueItem
from .state_machine import transition_run
from .urlfilter import normalize_url

logger = logging.getLogger(__name__)

ACTIVE_ITEM_STATUSES = ('pending', 'processing')


class QueueStore:
    """
    Concurrency-safe work table operations for crawl runs.

    Claims use ``SELECT ... FOR UPDATE SKIP LOCKED`` where the database
    supports it, followed by a compare-and-swap on status, so two workers
    can never both move the same row to ``processing``.
    """

    # Claim attempts before reporting "nothing claimable right now"
    CLAIM_ATTEMPTS = 5
    # Bound on IN (...) parameter lists
    BATCH_SIZE = 500

    def enqueue_seed(self, run: CrawlRun, url: str) -> QueueItem:
        """Insert the depth-0 item for a run."""
        item, created = QueueItem.objects.get_or_create(
            run=run,
            url=normalize_url(url),
            defaults={'status': 'pending', 'depth': 0, 'parent_url': None},
        )
        if created:
            logger.debug(f"Seeded run {run.id} with {item.url}")
        return item

    def claim_next(self, run_id: int) -> Optional[QueueItem]:
        """
        Atomically claim the shallowest, oldest pending item of a run.

        Returns:
            The claimed item (now ``processing``), or None when no pending
            item could be claimed at call time.
        """
        for _ in range(self.CLAIM_ATTEMPTS):
            with transaction.atomic():
                candidate = (
                    QueueItem.objects
                    .select_for_update(skip_locked=True)
                    .filter(run_id=run_id, status='pending')
                    .order_by('depth', 'created_at', 'id')
                    .first()
                )
                if candidate is None:
                    return None

                now = timezone.now()
                claimed = QueueItem.objects.filter(
                    id=candidate.id,
                    status='pending',
                ).update(status='processing', updated_at=now)

                if claimed:
                    candidate.status = 'processing'
                    candidate.updated_at = now
                    return candidate

            logger.debug(f"Lost claim race for item {candidate.id} in run {run_id}, retrying")

        return None

    def record_success(
        self,
        item: QueueItem,
        html: Optional[str],
        status_code: Optional[int],
        final_url: Optional[str],
        title: Optional[str] = None,
    ) -> bool:
        """
        Mark a processing item completed and store its response.

        Returns:
            False if the item was no longer ``processing`` (already
            finalized or canceled), in which case nothing is written.
        """
        if title:
            title = title[:QueueItem.TITLE_MAX_LENGTH]
        updated = QueueItem.objects.filter(id=item.id, status='processing').update(
            status='completed',
            response_html=html,
            response_status_code=status_code,
            response_final_url=final_url,
            page_title=title,
            error=None,
            updated_at=timezone.now(),
        )
        if updated:
            item.status = 'completed'
        else:
            logger.debug(f"Ignoring duplicate completion of item {item.id}")
        return bool(updated)

    def release(self, item: QueueItem) -> bool:
        """Hand a claimed, unfetched item back to ``pending``."""
        updated = QueueItem.objects.filter(id=item.id, status='processing').update(
            status='pending',
            updated_at=timezone.now(),
        )
        if updated:
            item.status = 'pending'
        return bool(updated)

    def record_failure(self, item: QueueItem, error: Dict) -> bool:
        """Mark a processing item failed with a structured error payload."""
        updated = QueueItem.objects.filter(id=item.id, status='processing').update(
            status='failed',
            error=error,
            response_status_code=error.get('status_code'),
            updated_at=timezone.now(),
        )
        if updated:
            item.status = 'failed'
        else:
            logger.debug(f"Ignoring duplicate failure of item {item.id}")
        return bool(updated)

    def enqueue_links(
        self,
        run_id: int,
        parent_url: str,
        links: Iterable[str],
        depth: int,
    ) -> int:
        """
        Insert links not yet present for the run.

        The existence check and the insert share one transaction, and the
        (run, url) unique constraint absorbs any insert that races with
        another worker.

        Returns:
            Number of rows actually inserted.
        """
        urls = list(dict.fromkeys(links))
        if not urls:
            return 0

        inserted = 0
        with transaction.atomic():
            for start in range(0, len(urls), self.BATCH_SIZE):
                batch = urls[start:start + self.BATCH_SIZE]
                existing = set(
                    QueueItem.objects
                    .filter(run_id=run_id, url__in=batch)
                    .values_list('url', flat=True)
                )
                new_items = [
                    QueueItem(
                        run_id=run_id,
                        url=url,
                        parent_url=parent_url,
                        depth=depth,
                        status='pending',
                    )
                    for url in batch
                    if url not in existing
                ]
                if not new_items:
                    continue
                QueueItem.objects.bulk_create(new_items, ignore_conflicts=True)
                present = QueueItem.objects.filter(run_id=run_id, url__in=batch).count()
                inserted += present - len(existing)

        return inserted

    def stats(self, run_id: int) -> Dict[str, int]:
        """Item counts by status for a run."""
        agg = QueueItem.objects.filter(run_id=run_id).aggregate(
            total=Count('id'),
            pending=Count('id', filter=Q(status='pending')),
            processing=Count('id', filter=Q(status='processing')),
            completed=Count('id', filter=Q(status='completed')),
            failed=Count('id', filter=Q(status='failed')),
            canceled=Count('id', filter=Q(status='canceled')),
        )
        return {key: value or 0 for key, value in agg.items()}

    def has_active_items(self, run_id: int) -> bool:
        return QueueItem.objects.filter(run_id=run_id, status__in=ACTIVE_ITEM_STATUSES).exists()

    def cancel_remaining(
        self,
        run_id: int,
        reason: str,
        final_status: str = 'canceled',
    ) -> int:
        """
        Cancel every pending/processing item and close the run.

        Args:
            run_id: CrawlRun primary key
            reason: Stored on each canceled item's error payload
            final_status: Terminal status for the run; a run that is
                already terminal keeps its status

        Returns:
            Number of items canceled.
        """
        with transaction.atomic():
            canceled = QueueItem.objects.filter(
                run_id=run_id,
                status__in=ACTIVE_ITEM_STATUSES,
            ).update(
                status='canceled',
                error={'message': reason},
                updated_at=timezone.now(),
            )
            transition_run(run_id, final_status, strict=False)

        logger.info(f"Canceled {canceled} remaining items for run {run_id}: {reason}")
        return canceled

    def reap_stale(
        self,
        run_id: Optional[int] = None,
        older_than: timedelta = timedelta(minutes=15),
    ) -> int:
        """
        Return items stuck in ``processing`` to ``pending``.

        An item is stale when its ``updated_at`` is older than
        ``older_than`` and its run is still running or paused.

        Returns:
            Number of items released.
        """
        cutoff = timezone.now() - older_than
        queryset = QueueItem.objects.filter(
            status='processing',
            updated_at__lt=cutoff,
            run__status__in=('running', 'paused'),
        )
        if run_id is not None:
            queryset = queryset.filter(run_id=run_id)

        with transaction.atomic():
            stale_ids = list(queryset.values_list('id', flat=True))
            released = QueueItem.objects.filter(
                id__in=stale_ids,
                status='processing',
            ).update(status='pending', updated_at=timezone.now())

        if released:
            logger.warning(f"Released {released} stale processing items (run={run_id or 'all'})")
        return released
