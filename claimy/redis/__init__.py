"""Redis-based job queue implementation for claimy."""

from claimy.redis.redis_job_queue import RedisJobQueue

__all__ = ["RedisJobQueue"]
