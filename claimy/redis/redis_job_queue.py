from dataclasses import dataclass, field
from datetime import datetime
import logging
from uuid import UUID, uuid4

try:
    import redis.asyncio as redis
    from redis.asyncio import Redis
except ImportError as e:
    raise ImportError(
        "Redis is not installed. Install it with: pip install claimy[redis]"
    ) from e

from claimy.abstract_job_queue import AbstractJobQueue
from claimy.job import Job, JobKind
from claimy.serializers.pydantic_serializer import PydanticSerializer
from claimy.serializers.serializer import Serializer

_LOGGER = logging.getLogger(__name__)


def _default_serializer() -> Serializer[Job]:
    return PydanticSerializer.for_type(Job)


@dataclass
class RedisJobQueue(AbstractJobQueue):
    """
    Job queue stored in Redis, shared by every worker connected to the same server:
    - Each job is a key holding its serialized record
    - Each kind has a sorted set of scheduled job ids scored by run time
    - A job is claimed by removing it from the sorted set (ZREM is atomic)
    - Exclusive kinds hold a SET NX EX mutex while a job runs
    """

    redis_client: Redis | None = None
    redis_url: str | None = None
    redis_password: str | None = None
    key_prefix: str = "claimy"
    serializer: Serializer[Job] = field(default_factory=_default_serializer)
    worker_id: UUID = field(default_factory=uuid4)
    _owns_client: bool = field(default=False, init=False)

    def __post_init__(self):
        if self.redis_client is None:
            if self.redis_url:
                self.redis_client = redis.from_url(
                    self.redis_url, password=self.redis_password, decode_responses=False
                )
            else:
                self.redis_client = redis.Redis(
                    host="localhost", port=6379, decode_responses=False
                )
            self._owns_client = True

    def _get_job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    def _get_jobs_key(self) -> str:
        """Set of every stored job id"""
        return f"{self.key_prefix}:jobs"

    def _get_schedule_key(self, kind: JobKind) -> str:
        return f"{self.key_prefix}:schedule:{kind.value}"

    def _get_lock_key(self, kind: JobKind) -> str:
        return f"{self.key_prefix}:lock:{kind.value}"

    async def __aenter__(self):
        await self.redis_client.ping()
        _LOGGER.info(f"Connected job queue {self.key_prefix} to redis")
        return await super().__aenter__()

    async def __aexit__(self, exc_type, exc_value, traceback):
        await super().__aexit__(exc_type, exc_value, traceback)
        if self._owns_client:
            await self.redis_client.aclose()

    async def _insert_job(self, job: Job) -> bool:
        created = await self.redis_client.set(
            self._get_job_key(job.id), self.serializer.serialize(job), nx=True
        )
        if not created:
            return False
        await self.redis_client.sadd(self._get_jobs_key(), job.id)
        return True

    async def _save_job(self, job: Job) -> None:
        await self.redis_client.set(
            self._get_job_key(job.id), self.serializer.serialize(job)
        )

    async def _load_job(self, job_id: str) -> Job | None:
        data = await self.redis_client.get(self._get_job_key(job_id))
        if data is None:
            return None
        return self.serializer.deserialize(data)

    async def _delete_jobs(self, job_ids: list[str]) -> int:
        if not job_ids:
            return 0
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.delete(*[self._get_job_key(job_id) for job_id in job_ids])
            pipe.srem(self._get_jobs_key(), *job_ids)
            for kind in JobKind:
                pipe.zrem(self._get_schedule_key(kind), *job_ids)
            results = await pipe.execute()
        return results[0]

    async def _list_jobs(self) -> list[Job]:
        job_ids = [
            job_id.decode() if isinstance(job_id, bytes) else job_id
            for job_id in await self.redis_client.smembers(self._get_jobs_key())
        ]
        if not job_ids:
            return []
        values = await self.redis_client.mget(
            [self._get_job_key(job_id) for job_id in job_ids]
        )
        return [self.serializer.deserialize(value) for value in values if value is not None]

    async def _schedule(self, job: Job) -> None:
        await self.redis_client.zadd(
            self._get_schedule_key(job.kind), {job.id: job.run_at.timestamp()}
        )

    async def _unschedule(self, kind: JobKind, job_id: str) -> bool:
        removed = await self.redis_client.zrem(self._get_schedule_key(kind), job_id)
        return removed == 1

    async def _due_job_ids(self, kind: JobKind, now: datetime, limit: int) -> list[str]:
        job_ids = await self.redis_client.zrangebyscore(
            self._get_schedule_key(kind), "-inf", now.timestamp(), start=0, num=limit
        )
        return [
            job_id.decode() if isinstance(job_id, bytes) else job_id for job_id in job_ids
        ]

    async def _try_lock(self, kind: JobKind) -> bool:
        acquired = await self.redis_client.set(
            self._get_lock_key(kind),
            str(self.worker_id),
            nx=True,
            ex=self.lock_ttl_seconds,
        )
        return bool(acquired)

    async def _unlock(self, kind: JobKind) -> None:
        lock_key = self._get_lock_key(kind)
        owner = await self.redis_client.get(lock_key)
        if isinstance(owner, bytes):
            owner = owner.decode()
        if owner == str(self.worker_id):
            await self.redis_client.delete(lock_key)
