import redis
import redis.asyncio

from GutSafe_Sync.gs_shared import config, errors


async def create_cache_client(
    host: str = config.REDIS_HOST,
    port: int = config.REDIS_PORT,
    db: int = config.REDIS_CACHE_DB,
) -> redis.asyncio.Redis:
    r = redis.asyncio.Redis(
        host=host,
        port=port,
        db=db,
        decode_responses=False,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
    )
    try:
        await r.ping()
    except redis.exceptions.ConnectionError:
        await r.aclose()
        raise errors.PersistenceError(f"Cannot connect to Redis at {host}:{port}")
    return r
