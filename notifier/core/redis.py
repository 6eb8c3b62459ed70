"""
Redis connection management
Backs the job queue
"""

import redis.asyncio as redis
from typing import Optional
import logging

from .config import settings

logger = logging.getLogger(__name__)

class RedisManager:
    """Holds the shared Redis client"""

    def __init__(self):
        self.redis_client: Optional[redis.Redis] = None

    async def connect(self) -> redis.Redis:
        """Initialize Redis connection"""
        self.redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS
        )
        await self.redis_client.ping()
        logger.info("Redis connection established")
        return self.redis_client

    async def disconnect(self):
        """Close Redis connection"""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Redis connection closed")

# Global redis manager
redis_manager = RedisManager()
