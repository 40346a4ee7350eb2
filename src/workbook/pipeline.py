"""
Workbook Pipeline - validates a question workbook end to end.

Steps:
1. Parse the workbook and classify sheets (qcm, cas_qcm, qroc, cas_qroc)
2. Extract items, stamping every row ai_status=unfixed (progress 0-30%)
3. Dispatch MCQ and QROC items concurrently through the chunk scheduler
   (progress 30-95%), then a retry pass for MCQ items still in error
4. Merge results back into rows
5. Rebuild the Erreurs sheet
6. Serialize the workbook as a data URL on the job record

Job states: pending -> processing -> completed | failed.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from config.constants import (
    AI_REASON_COLUMN, DISPATCH_PROGRESS_END, EXTRACTION_PROGRESS_EVERY, EXTRACTION_PROGRESS_SHARE,
    JOB_FAILED_MESSAGE, OFFLINE_REASON, STATUS_FIXED, AI_STATUS_COLUMN,
)
from config.logging_config import get_logger
from config.prompts import build_system_prompt
from config.settings import Settings, get_settings
from core.models import AnalysisResult, ItemKind, JobStatus, ProgressEvent, SheetKind
from storage.job_store import JobStore
from utils.text import canonical_columns, sheet_key
from workbook import io as workbook_io
from workbook.extraction import SourceRow, extract_row
from workbook.merge import build_error_rows, merge_result
from workbook.io import SheetRows

logger = get_logger(__name__)


class ProgressReporter:
    """
    Pushes progress to the job record, never moving backwards.

    MCQ and QROC dispatch share one reporter, so their completed items and
    batches add up into single dispatch totals.
    """

    def __init__(self, job_store: JobStore, job_id: str):
        self.job_store = job_store
        self.job_id = job_id
        self.progress = 0
        self.dispatch_total = 0
        self.dispatch_batches = 0
        self.dispatch_done: Dict[ItemKind, ProgressEvent] = {}

    def push(self, progress: int, **fields) -> None:
        self.progress = max(self.progress, min(100, int(progress)))
        self.job_store.update(self.job_id, progress=self.progress, **fields)

    def start_dispatch(self, total_items: int, total_batches: int, message: str) -> None:
        self.dispatch_total = total_items
        self.dispatch_batches = total_batches
        self.dispatch_done = {}
        self.push(
            EXTRACTION_PROGRESS_SHARE,
            processed_items=0,
            current_batch=0,
            total_batches=total_batches,
            message=message,
        )

    def on_batch(self, kind: ItemKind, label: str):
        def callback(event: ProgressEvent) -> None:
            self.dispatch_done[kind] = event
            done_items = sum(e.completed_items for e in self.dispatch_done.values())
            done_batches = sum(e.completed_batches for e in self.dispatch_done.values())
            share = DISPATCH_PROGRESS_END - EXTRACTION_PROGRESS_SHARE
            progress = EXTRACTION_PROGRESS_SHARE + (share * done_items // max(1, self.dispatch_total))
            self.push(
                progress,
                processed_items=done_items,
                current_batch=done_batches,
                total_batches=self.dispatch_batches,
                message=f"Analyse IA {label}: lot {event.completed_batches}/{event.total_batches} "
                        f"({done_items}/{self.dispatch_total} éléments)",
            )
        return callback


class WorkbookPipeline:
    """
    Orchestrates one validation job.

    Usage:
        store = FileJobStore()
        job = store.create("banque.xlsx")
        pipeline = WorkbookPipeline(store)
        await pipeline.process(job.id, file_bytes, instructions="...")
    """

    def __init__(self, job_store: JobStore, settings: Optional[Settings] = None, transport=None):
        self.job_store = job_store
        self.settings = settings or get_settings()
        if transport is None and self.settings.ai_enabled:
            from ai.transport import AzureTransportClient
            transport = AzureTransportClient(self.settings)
        self.transport = None if self.settings.force_offline else transport

    @property
    def ai_enabled(self) -> bool:
        return self.transport is not None

    async def process(self, job_id: str, file_bytes: bytes, instructions: Optional[str] = None) -> Optional[bytes]:
        """
        Run the job.

        Returns:
            The rebuilt workbook bytes, or None if the job failed
        """
        self.job_store.update(
            job_id,
            status=JobStatus.PROCESSING,
            started_at=datetime.now(),
            message="Lecture du fichier et préparation des feuilles...",
        )
        try:
            output = await self._run(job_id, file_bytes, instructions)
        except Exception as e:
            logger.exception(f"Job {job_id} failed: {e}")
            self.job_store.update(
                job_id,
                status=JobStatus.FAILED,
                message=JOB_FAILED_MESSAGE,
                error_message=str(e) or e.__class__.__name__,
                completed_at=datetime.now(),
            )
            return None
        return output

    async def _run(self, job_id: str, file_bytes: bytes, instructions: Optional[str]) -> bytes:
        reporter = ProgressReporter(self.job_store, job_id)

        # 1. Parse
        loaded = workbook_io.load(file_bytes)
        recognized: List[tuple[SheetRows, SheetKind]] = []
        for name in loaded.sheet_names:
            kind = sheet_key(name)
            if kind is not None:
                recognized.append((workbook_io.read_rows(loaded, name), kind))
        total_rows = sum(len(sheet.rows) for sheet, _ in recognized)
        logger.info(f"Job {job_id}: {len(recognized)} canonical sheets, {total_rows} rows")
        self.job_store.update(job_id, total_items=total_rows, processed_items=0, current_batch=0, total_batches=0)

        # 2. Extract
        sources: Dict[ItemKind, List[SourceRow]] = {ItemKind.MCQ: [], ItemKind.QROC: []}
        columns_by_sheet: Dict[str, Dict[str, str]] = {}
        processed = 0
        for sheet, kind in recognized:
            columns = canonical_columns(sheet.headers)
            columns_by_sheet[sheet.name] = columns
            for index in range(len(sheet.rows)):
                source = extract_row(sheet, kind, index, columns)
                if source is not None:
                    sources[kind.item_kind].append(source)
                processed += 1
                if processed % EXTRACTION_PROGRESS_EVERY == 0 or processed == total_rows:
                    reporter.push(
                        EXTRACTION_PROGRESS_SHARE * processed // max(1, total_rows),
                        processed_items=processed,
                        message=f"Préparation des feuilles • {sheet.name} ({processed}/{total_rows})",
                    )

        # 3-4. Dispatch and merge
        successful, failed = 0, 0
        if self.ai_enabled and (sources[ItemKind.MCQ] or sources[ItemKind.QROC]):
            results = await self._dispatch(sources, instructions, reporter)
            for kind_sources in sources.values():
                for source in kind_sources:
                    result = results[source.item.id]
                    merge_result(
                        source,
                        result,
                        require_option_explanations=self.settings.require_option_explanations,
                        match_policy=self.settings.qroc_match_policy,
                    )
                    if result.is_ok:
                        successful += 1
                    else:
                        failed += 1
        else:
            for kind_sources in sources.values():
                for source in kind_sources:
                    source.row[AI_REASON_COLUMN] = OFFLINE_REASON
            failed = sum(len(s) for s in sources.values())

        # 5. Erreurs sheet
        for sheet, _ in recognized:
            workbook_io.write_rows(loaded, sheet)
        canonical_sheets = [sheet for sheet, _ in recognized]
        workbook_io.replace_errors_sheet(loaded, build_error_rows(canonical_sheets, columns_by_sheet))
        fixed_count = sum(
            1 for sheet in canonical_sheets for row in sheet.rows
            if row.get(AI_STATUS_COLUMN) == STATUS_FIXED
        )

        # 6. Finalize
        output = workbook_io.save(loaded)
        self.job_store.update(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            processed_items=total_rows,
            successful_analyses=successful,
            failed_analyses=failed,
            fixed_count=fixed_count,
            output_url=workbook_io.to_data_url(output),
            completed_at=datetime.now(),
            message=(
                "Terminé: corrections IA appliquées" if self.ai_enabled
                else "Terminé sans IA, configurez AZURE_OPENAI_* pour activer les corrections"
            ),
        )
        logger.info(f"Job {job_id} completed: {fixed_count}/{total_rows} rows fixed, {failed} analyses failed")
        return output

    async def _dispatch(
        self,
        sources: Dict[ItemKind, List[SourceRow]],
        instructions: Optional[str],
        reporter: ProgressReporter,
    ) -> Dict[str, AnalysisResult]:
        """
        Run MCQ and QROC scheduling concurrently; they share no mutable state.

        If either class fails, the other is cancelled before the error is
        raised, so nothing touches the job record once it is marked failed.
        """
        from ai.batch_analyzer import BatchAnalyzer
        from ai.chunk_scheduler import ChunkScheduler, partition

        scheduler = ChunkScheduler(BatchAnalyzer(self.transport, self.settings), self.settings)
        mcq_items = [s.item for s in sources[ItemKind.MCQ]]
        qroc_items = [s.item for s in sources[ItemKind.QROC]]

        mcq_batch_size = 1 if self.settings.qcm_single else self.settings.batch_size
        total_batches = (
            len(partition(mcq_items, mcq_batch_size)) + len(partition(qroc_items, self.settings.batch_size))
        )
        reporter.start_dispatch(
            total_items=len(mcq_items) + len(qroc_items),
            total_batches=total_batches,
            message=(
                "Mode QCM mono-élément activé, envoi un par un" if self.settings.qcm_single and mcq_items
                else f"Analyse IA: {len(mcq_items)} QCM, {len(qroc_items)} QROC"
            ),
        )

        async def run_mcq() -> Dict[str, AnalysisResult]:
            if not mcq_items:
                return {}
            results = await scheduler.run(
                mcq_items,
                batch_size=mcq_batch_size,
                concurrency=self.settings.concurrency,
                system_prompt=build_system_prompt(ItemKind.MCQ, instructions, self.settings.explanation_style),
                on_progress=reporter.on_batch(ItemKind.MCQ, "QCM"),
            )
            return await self._retry_failed_mcq(scheduler, mcq_items, results, instructions)

        async def run_qroc() -> Dict[str, AnalysisResult]:
            if not qroc_items:
                return {}
            return await scheduler.run(
                qroc_items,
                batch_size=self.settings.batch_size,
                concurrency=self.settings.concurrency,
                system_prompt=build_system_prompt(ItemKind.QROC, instructions),
                on_progress=reporter.on_batch(ItemKind.QROC, "QROC"),
            )

        tasks = [asyncio.ensure_future(run_mcq()), asyncio.ensure_future(run_qroc())]
        try:
            mcq_results, qroc_results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return {**mcq_results, **qroc_results}

    async def _retry_failed_mcq(self, scheduler, items, results, instructions) -> Dict[str, AnalysisResult]:
        """Second, more permissive pass for MCQ items that ended in error."""
        failed_items = [item for item in items if not results[item.id].is_ok]
        if not failed_items or not self.settings.retry_pass:
            return results

        logger.info(f"Retrying {len(failed_items)} MCQ items with the repair prompt")
        retried = await scheduler.run(
            failed_items,
            batch_size=self.settings.retry_batch_size,
            concurrency=self.settings.concurrency,
            system_prompt=build_system_prompt(ItemKind.MCQ, instructions, retry=True),
        )
        merged = dict(results)
        for item_id, result in retried.items():
            if result.is_ok:
                merged[item_id] = result
        return merged
