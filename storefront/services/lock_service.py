import redis
from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje atomowo przez lua, skrypt dziala jako jedna nieprzerywalna operacja
#nie mozna wcisnac sie miedzy GET a DEL


class LockService:
    """
    -blokada checkoutu (jeden create_intent na koszyk/email naraz)
    -zwalnianie locka tylko przez wlasciciela
    -atomowosc przy pomocy lua
    """

    def __init__(self, url: str | None = None):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def _key(checkout_key: str) -> str:
        return f"checkout:{checkout_key}:lock"

    @redis_retry()
    def acquire_checkout_lock(self, checkout_key: str, owner: str, ttl: int) -> bool:
        key = self._key(checkout_key)
        logger.info(f"Acquire lock {key} for {owner}")
        #SET checkout:abc:lock "owner" NX EX 30
        return bool(
            self.redis.set(
                name=key,
                value=owner,
                nx=True,
                ex=ttl,  # wygasa sam, nie trzeba recznie czyscic po awarii
            )
        )

    @redis_retry()
    def release_checkout_lock(self, checkout_key: str, owner: str) -> bool:
        key = self._key(checkout_key)
        logger.info(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)
