"""
Job tracking for validation runs.

Architecture:
    data/
    └── jobs/
        └── {job_id}.json         # État complet du job (JobRecord)

Le pipeline ne fait qu'appeler update(job_id, **champs); le stockage
(mémoire ou fichiers JSON) est interchangeable.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from config.constants import DATA_DIR, JOBS_DIR
from config.logging_config import get_logger
from core.exceptions import JobNotFoundError, JobStoreError
from core.models import JobRecord, JobStatus

logger = get_logger(__name__)

JobListener = Callable[[JobRecord], None]


class JobStore(ABC):
    """
    Gestionnaire des jobs de validation.

    Les écouteurs (subscribe) reçoivent le JobRecord après chaque mise à jour.
    """

    def __init__(self):
        self._listeners: List[JobListener] = []
        self._lock = threading.RLock()

    # ==================== STORAGE BACKEND ====================

    @abstractmethod
    def _load(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    def _save(self, job: JobRecord) -> None:
        ...

    @abstractmethod
    def _all(self) -> List[JobRecord]:
        ...

    # ==================== PUBLIC API ====================

    def create(self, file_name: str, instructions: Optional[str] = None) -> JobRecord:
        """Crée un job en attente."""
        job = JobRecord(
            file_name=file_name,
            instructions=instructions,
            message="Job en attente de traitement",
        )
        with self._lock:
            self._save(job)
        logger.info(f"Job {job.id} created for {file_name}")
        return job

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._load(job_id)

    def update(self, job_id: str, **fields) -> JobRecord:
        """
        Applique une mise à jour partielle et notifie les écouteurs.

        Raises:
            JobNotFoundError: job inconnu
            JobStoreError: champ inconnu ou valeur invalide
        """
        with self._lock:
            job = self._load(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            try:
                updated = JobRecord.model_validate({**job.model_dump(), **fields})
            except ValidationError as e:
                raise JobStoreError(
                    f"Invalid job update for {job_id}",
                    details={"fields": sorted(fields), "errors": e.error_count()},
                ) from e
            self._save(updated)

        for listener in list(self._listeners):
            try:
                listener(updated)
            except Exception as e:
                # Display errors never break processing
                logger.warning(f"Job listener error: {e}")
        return updated

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 10) -> List[JobRecord]:
        """Jobs les plus récents d'abord, filtrés par statut."""
        with self._lock:
            jobs = self._all()
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:max(0, min(limit, 100))]

    def subscribe(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: JobListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)


class InMemoryJobStore(JobStore):
    """Stockage en mémoire (tests, exécutions ponctuelles)."""

    def __init__(self):
        super().__init__()
        self._jobs: Dict[str, JobRecord] = {}

    def _load(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def _save(self, job: JobRecord) -> None:
        self._jobs[job.id] = job

    def _all(self) -> List[JobRecord]:
        return list(self._jobs.values())


class FileJobStore(JobStore):
    """
    Stockage JSON: un fichier par job sous {base_dir}/jobs/.

    Écriture atomique (fichier temporaire puis remplacement).
    """

    def __init__(self, base_dir: Optional[str] = None):
        super().__init__()
        self.jobs_dir = Path(base_dir or DATA_DIR) / JOBS_DIR

    def _path(self, job_id: str) -> Path:
        # Job ids are uuids; reject anything that could escape the directory
        if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
            raise JobStoreError(f"Invalid job id: {job_id!r}")
        return self.jobs_dir / f"{job_id}.json"

    def _load(self, job_id: str) -> Optional[JobRecord]:
        path = self._path(job_id)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return JobRecord.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise JobStoreError(f"Corrupted job file: {path}", details={"error": str(e)}) from e

    def _save(self, job: JobRecord) -> None:
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(job.id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(job.model_dump(mode='json'), f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    def _all(self) -> List[JobRecord]:
        if not self.jobs_dir.exists():
            return []
        jobs = []
        for path in self.jobs_dir.glob("*.json"):
            try:
                job = self._load(path.stem)
            except JobStoreError as e:
                logger.warning(str(e))
                continue
            if job is not None:
                jobs.append(job)
        return jobs
