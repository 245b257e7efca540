"""Batch description pipeline with per-item credit accounting.

Both streaming variants yield plain event dicts; ``stream_bulk_descriptions``
frames them as Server-Sent Events. Event kinds:

    progress  {"type": "progress", "index": i, "total": n}
    result    {"type": "result", "result": {...}}
    complete  {"type": "complete", "summary": {...}}
    error     {"type": "error", "error": "..."}   (fatal, stream ends)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Literal, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session_maker
from models.credit_transaction import BULK_DESCRIPTION, IMAGE_DESCRIPTION
from services.credits import (
    CREDIT_COST_PER_IMAGE,
    InsufficientCreditsError,
    deduct_credits,
    get_credit_balance,
)
from services.image_processor import (
    ImageDescriptionService,
    ImageUpload,
    ProcessResult,
    build_record,
    create_description_service,
)

logger = logging.getLogger(__name__)

BulkMode = Literal["sequential", "concurrent"]


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


def progress_event(index: int, total: int) -> Dict[str, Any]:
    return {"type": "progress", "index": index, "total": total}


def result_event(result: ProcessResult) -> Dict[str, Any]:
    return {"type": "result", "result": result.model_dump()}


def complete_event(summary: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "complete", "summary": summary}


def error_event(message: str) -> Dict[str, Any]:
    return {"type": "error", "error": message or "Unknown error occurred"}


async def ensure_batch_credits(user_id: str, db: AsyncSession, file_count: int) -> int:
    """Reject the whole batch up front when the balance cannot cover it."""
    required = int(file_count) * CREDIT_COST_PER_IMAGE
    available = await get_credit_balance(user_id, db)
    if available < required:
        noun = "credit" if required == 1 else "credits"
        target = "these images" if file_count > 1 else "this image"
        raise InsufficientCreditsError(
            required=required,
            available=available,
            message=f"You need at least {required} {noun} to describe {target}.",
        )
    return available


def summarize(
    total: int,
    results: List[ProcessResult],
    *,
    credits_used: int,
    remaining_credits: int,
    stopped_due_to_credits: bool = False,
) -> Dict[str, Any]:
    successful = sum(1 for result in results if result.success)
    return {
        "total": total,
        "successful": successful,
        "failed": len(results) - successful,
        "skipped": total - len(results),
        "credits_used": credits_used,
        "remaining_credits": remaining_credits,
        "stopped_due_to_credits": stopped_due_to_credits,
    }


class BulkDescriptionProcessor:
    """Runs a list of uploads through the description service for one user."""

    def __init__(self, user_id: str, service: ImageDescriptionService, db: AsyncSession):
        self.user_id = user_id
        self.service = service
        self.db = db

    async def _store_and_charge(self, upload: ImageUpload, result: ProcessResult) -> ProcessResult:
        """Persist a successful result and debit one credit in the same commit."""
        self.db.add(build_record(self.user_id, upload, result))
        try:
            if result.billable:
                charge = await deduct_credits(
                    self.user_id,
                    self.db,
                    amount=CREDIT_COST_PER_IMAGE,
                    transaction_type=IMAGE_DESCRIPTION,
                    description=f"Image description for {upload.filename}",
                    commit=False,
                )
                result.charged = True
                result.remaining_credits = charge["balance_after"]
            await self.db.commit()
        except InsufficientCreditsError as exc:
            await self.db.rollback()
            return ProcessResult(
                success=False,
                index=result.index,
                filename=result.filename,
                error="Insufficient credits",
                remaining_credits=exc.available,
            )
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Could not store description for %s", upload.filename)
            return ProcessResult(success=False, index=result.index, filename=result.filename, error="Processing failed")
        return result

    async def run_sequential(self, uploads: List[ImageUpload]) -> AsyncIterator[Dict[str, Any]]:
        """One file at a time, charging after each success.

        Stops early once the balance cannot pay for the next file.
        """
        total = len(uploads)
        results: List[ProcessResult] = []
        credits_used = 0
        stopped = False

        yield progress_event(0, total)
        try:
            for index, upload in enumerate(uploads):
                if await get_credit_balance(self.user_id, self.db) < CREDIT_COST_PER_IMAGE:
                    stopped = True
                    logger.info("Bulk run for user %s stopped at %s/%s: out of credits", self.user_id, index, total)
                    break

                yield progress_event(index + 1, total)
                result = await self.service.analyze(upload, index)
                if result.success:
                    result = await self._store_and_charge(upload, result)
                    if result.error == "Insufficient credits":
                        stopped = True
                if result.charged:
                    credits_used += CREDIT_COST_PER_IMAGE
                if result.remaining_credits is None:
                    result.remaining_credits = await get_credit_balance(self.user_id, self.db)

                results.append(result)
                yield result_event(result)
                if stopped:
                    break

            remaining = await get_credit_balance(self.user_id, self.db)
            summary = summarize(
                total,
                results,
                credits_used=credits_used,
                remaining_credits=remaining,
                stopped_due_to_credits=stopped,
            )
            logger.info("Bulk run for user %s complete: %s", self.user_id, summary)
            yield complete_event(summary)
        except Exception as exc:
            logger.exception("Bulk run for user %s failed", self.user_id)
            yield error_event(str(exc))

    async def run_concurrent(self, uploads: List[ImageUpload]) -> AsyncIterator[Dict[str, Any]]:
        """Fixed-size batches with a bounded fan-out of API calls.

        Credits for every billable success are deducted once at the end.
        """
        total = len(uploads)
        batch_size = max(int(settings.BULK_BATCH_SIZE), 1)
        semaphore = asyncio.Semaphore(max(int(settings.BULK_MAX_CONCURRENCY), 1))
        delay_seconds = max(int(settings.BULK_BATCH_DELAY_MS), 0) / 1000
        results: List[ProcessResult] = []
        processed = 0

        async def _guarded(upload: ImageUpload, index: int) -> ProcessResult:
            async with semaphore:
                return await self.service.analyze(upload, index)

        yield progress_event(0, total)
        try:
            for start in range(0, total, batch_size):
                batch = uploads[start:start + batch_size]
                settled = await asyncio.gather(
                    *(_guarded(upload, start + offset) for offset, upload in enumerate(batch)),
                    return_exceptions=True,
                )

                batch_results: List[ProcessResult] = []
                for offset, (upload, outcome) in enumerate(zip(batch, settled)):
                    if isinstance(outcome, BaseException):
                        logger.warning("Concurrent describe failed for %s: %s", upload.filename, outcome)
                        outcome = ProcessResult(
                            success=False,
                            index=start + offset,
                            filename=upload.filename,
                            error=str(outcome) or "Processing failed",
                        )
                    elif outcome.success:
                        self.db.add(build_record(self.user_id, upload, outcome))
                    batch_results.append(outcome)
                await self.db.commit()

                for result in batch_results:
                    processed += 1
                    results.append(result)
                    yield progress_event(processed, total)
                    yield result_event(result)

                if start + batch_size < total and delay_seconds:
                    await asyncio.sleep(delay_seconds)

            billable = sum(1 for result in results if result.success and result.billable)
            credits_used = 0
            if billable:
                await deduct_credits(
                    self.user_id,
                    self.db,
                    amount=billable * CREDIT_COST_PER_IMAGE,
                    transaction_type=BULK_DESCRIPTION,
                    description="Bulk image description (optimized)",
                )
                credits_used = billable * CREDIT_COST_PER_IMAGE

            remaining = await get_credit_balance(self.user_id, self.db)
            summary = summarize(total, results, credits_used=credits_used, remaining_credits=remaining)
            logger.info("Concurrent bulk run for user %s complete: %s", self.user_id, summary)
            yield complete_event(summary)
        except InsufficientCreditsError as exc:
            logger.warning("Concurrent bulk run for user %s could not be charged: %s", self.user_id, exc.detail)
            yield error_event("Insufficient credits")
        except Exception as exc:
            logger.exception("Concurrent bulk run for user %s failed", self.user_id)
            yield error_event(str(exc))

    async def run_batch(
        self,
        uploads: List[ImageUpload],
        *,
        description: str,
    ) -> Tuple[List[ProcessResult], Dict[str, Any]]:
        """Describe every file, then store and charge all successes in one commit."""
        results: List[ProcessResult] = []
        for index, upload in enumerate(uploads):
            result = await self.service.analyze(upload, index)
            if result.success:
                self.db.add(build_record(self.user_id, upload, result))
            results.append(result)

        billable = sum(1 for result in results if result.success and result.billable)
        try:
            if billable:
                await deduct_credits(
                    self.user_id,
                    self.db,
                    amount=billable * CREDIT_COST_PER_IMAGE,
                    transaction_type=IMAGE_DESCRIPTION if len(uploads) == 1 else BULK_DESCRIPTION,
                    description=description,
                    commit=False,
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        for result in results:
            result.charged = result.success and result.billable
        remaining = await get_credit_balance(self.user_id, self.db)
        return results, summarize(
            len(uploads),
            results,
            credits_used=billable * CREDIT_COST_PER_IMAGE,
            remaining_credits=remaining,
        )


async def collect_sequential(
    user_id: str,
    uploads: List[ImageUpload],
    db: AsyncSession,
) -> Tuple[List[ProcessResult], Dict[str, Any]]:
    """Run the sequential variant to completion and return its final state."""
    results: List[ProcessResult] = []
    summary: Dict[str, Any] = {}
    async with await create_description_service(db) as service:
        processor = BulkDescriptionProcessor(user_id, service, db)
        async for event in processor.run_sequential(uploads):
            if event["type"] == "result":
                results.append(ProcessResult(**event["result"]))
            elif event["type"] == "complete":
                summary = event["summary"]
            elif event["type"] == "error":
                raise RuntimeError(event["error"])
    return results, summary


async def stream_bulk_descriptions(
    user_id: str,
    uploads: List[ImageUpload],
    mode: BulkMode = "sequential",
) -> AsyncIterator[str]:
    """SSE body for the bulk endpoints.

    Opens its own session: the request-scoped one is gone once the
    streaming response starts.
    """
    async with async_session_maker() as db:
        try:
            service = await create_description_service(db)
        except Exception as exc:
            logger.exception("Could not initialise description service for user %s", user_id)
            yield format_sse(error_event(str(exc)))
            return

        async with service:
            processor = BulkDescriptionProcessor(user_id, service, db)
            events = processor.run_concurrent(uploads) if mode == "concurrent" else processor.run_sequential(uploads)
            async for event in events:
                yield format_sse(event)
