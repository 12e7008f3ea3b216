import json
import threading
from typing import Dict, Iterator, Optional, Protocol

import redis

from ..config import JobConfig
from ..logger import logger
from ..models import Job


class JobStore(Protocol):
    """Key-value store for jobs; implementations must be safe to share between threads."""

    def get(self, job_id: str) -> Optional[Job]: ...

    def set(self, job: Job) -> None: ...

    def delete(self, job_id: str) -> bool: ...

    def ids(self) -> Iterator[str]: ...


class InMemoryJobStore:
    """Process-local store guarded by a lock. Values are copied in and out."""

    def __init__(self):
        self._jobs: Dict[str, dict] = {}
        self._lock = threading.RLock()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            data = self._jobs.get(job_id)
            return Job.from_dict(data) if data else None

    def set(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job.to_dict()

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def ids(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._jobs.keys()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class RedisJobStore:
    """Jobs as JSON strings under ``<prefix><id>`` with a safety TTL."""

    def __init__(self, client: Optional[redis.Redis] = None, host: str = "localhost", port: int = 6379,
                 prefix: str = "montage_job:", ttl: int = 86400):
        self.redis = client or redis.Redis(host=host, port=port, decode_responses=True)
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, job_id: str) -> str:
        return f"{self.prefix}{job_id}"

    def get(self, job_id: str) -> Optional[Job]:
        data = self.redis.get(self._key(job_id))
        if data:
            return Job.from_dict(json.loads(data))
        return None

    def set(self, job: Job) -> None:
        self.redis.set(self._key(job.id), json.dumps(job.to_dict()), ex=self.ttl)

    def delete(self, job_id: str) -> bool:
        return bool(self.redis.delete(self._key(job_id)))

    def ids(self) -> Iterator[str]:
        for key in self.redis.scan_iter(match=f"{self.prefix}*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            yield key[len(self.prefix):]


def create_job_store(config: JobConfig) -> JobStore:
    """Build the store selected by JOB_STORE (memory|redis)."""
    if config.store_backend == "redis":
        logger.info(f"📡 Job store: Redis at {config.redis_host}:{config.redis_port}")
        return RedisJobStore(host=config.redis_host, port=config.redis_port,
                             ttl=max(config.retention_seconds * 2, 3600))
    return InMemoryJobStore()
