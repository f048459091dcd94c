"""
Lock Node.
HTTP API di atas LockFacade dan RedisStore:
- Acquire / release lock lewat HTTP
- Lookup bucket dan field untuk key
- Prometheus metrics dan health check
"""

import asyncio
import logging
import time
from typing import Dict, Optional

from aiohttp import web

from ..exceptions import InvalidLockConfig
from ..lock.base import LockHandle
from ..lock.facade import LockFacade
from ..store.redis_store import RedisStore
from ..utils.config import KVLockConfig
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)


class LockNode:
    """
    HTTP node untuk kvlock.

    Handle lock disimpan di node, di-index dengan owner token, supaya
    client HTTP cukup mengirim (key, token) saat release.
    """

    def __init__(self,
                 config: KVLockConfig,
                 store: Optional[RedisStore] = None,
                 facade: Optional[LockFacade] = None):
        """
        Args:
            config: KVLockConfig
            store: RedisStore, default dibuat dari config
            facade: LockFacade, default dibuat dari config dan store
        """
        self.config = config
        self.store = store or RedisStore.from_config(config)
        self.facade = facade or LockFacade.from_config(config, store=self.store)

        # owner token -> LockHandle
        self.handles: Dict[str, LockHandle] = {}

        # Statistics
        self.locks_acquired = 0
        self.locks_released = 0
        self.lock_timeouts = 0

        # HTTP server
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._setup_routes()

        self._running = False

        logger.info(f"LockNode initialized (variant={self.facade.variant_name})")

    def _setup_routes(self):
        """Setup HTTP API routes"""
        self.app.router.add_post('/api/lock/acquire', self.handle_acquire_lock)
        self.app.router.add_post('/api/lock/release', self.handle_release_lock)
        self.app.router.add_get('/api/lock/status', self.handle_lock_status)
        self.app.router.add_get('/api/bucket', self.handle_bucket)
        self.app.router.add_get('/api/metrics', self.handle_metrics)
        self.app.router.add_get('/health', self.handle_health)

    async def start(self):
        """Start node dan HTTP server"""
        logger.info("Starting lock node...")

        try:
            await self.store.ping()
            logger.info("Connected to Redis successfully")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.config.node_host, self.config.node_port)
        await self.site.start()

        self._running = True
        logger.info(f"Lock node started at http://{self.config.node_host}:{self.config.node_port}")

    async def stop(self):
        """Stop node, release semua lock yang masih dipegang"""
        logger.info("Stopping lock node...")
        self._running = False

        for token, handle in list(self.handles.items()):
            await self.facade.release(handle)
            del self.handles[token]

        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

        await self.store.close()
        logger.info("Lock node stopped")

    async def handle_acquire_lock(self, request: web.Request) -> web.Response:
        """HTTP endpoint untuk acquire lock"""
        try:
            data = await request.json()
            key = data['key']
            wait = float(data.get('wait', 0))
            lease = data.get('lease')
            lease = float(lease) if lease is not None else None

            handle = await self.facade.try_acquire(key, wait, lease)
            if handle is None:
                self.lock_timeouts += 1
                return web.json_response({'status': 'timeout', 'key': key}, status=409)

            self.handles[handle.owner_token] = handle
            self.locks_acquired += 1
            return web.json_response({
                'status': 'acquired',
                'key': key,
                'token': handle.owner_token,
                'variant': handle.variant
            })

        except (KeyError, ValueError, TypeError, InvalidLockConfig) as e:
            return web.json_response({'error': f"invalid request: {e}"}, status=400)
        except Exception as e:
            logger.error(f"Error in acquire_lock: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def handle_release_lock(self, request: web.Request) -> web.Response:
        """HTTP endpoint untuk release lock"""
        try:
            data = await request.json()
            key = data['key']
            token = data['token']
        except (KeyError, ValueError, TypeError) as e:
            return web.json_response({'error': f"invalid request: {e}"}, status=400)

        handle = self.handles.get(token)
        if handle is None or handle.key != key:
            return web.json_response({'status': 'not_held', 'key': key}, status=404)

        released = await self.facade.release(handle)
        del self.handles[token]
        if not released:
            # Lease sudah habis atau lock diambil alih
            return web.json_response({'status': 'not_held', 'key': key}, status=409)

        self.locks_released += 1
        return web.json_response({'status': 'released', 'key': key})

    async def handle_lock_status(self, request: web.Request) -> web.Response:
        """Get status semua lock yang dipegang node ini"""
        now = time.time()
        status = {
            'variant': self.facade.variant_name,
            'held_locks': len(self.handles),
            'locks': {
                token: {
                    'key': handle.key,
                    'age': now - handle.acquired_at
                }
                for token, handle in self.handles.items()
            },
            'statistics': {
                'locks_acquired': self.locks_acquired,
                'locks_released': self.locks_released,
                'lock_timeouts': self.lock_timeouts
            }
        }
        return web.json_response(status)

    async def handle_bucket(self, request: web.Request) -> web.Response:
        """Lookup bucket (dan optional field) untuk key"""
        key = request.query.get('key')
        if not key:
            return web.json_response({'error': 'missing key'}, status=400)

        partitioner = self.store.partitioner
        result = {
            'key': key,
            'bucketing_enabled': partitioner.enabled,
            'bucket': partitioner.bucket_of(key)
        }
        field = request.query.get('field')
        if field is not None:
            result['field'] = partitioner.field_of(field)
        return web.json_response(result)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Export Prometheus metrics"""
        metrics_data = metrics.get_metrics()
        return web.Response(body=metrics_data, content_type='text/plain')

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint"""
        if self._running:
            return web.json_response({'status': 'healthy'})
        else:
            return web.json_response({'status': 'unhealthy'}, status=503)


# Test code
async def run_lock_node():
    """Jalankan satu lock node dengan config dari environment"""
    # Start Redis terlebih dahulu dengan Docker:
    # docker run -d -p 6379:6379 redis:7-alpine
    node = LockNode(KVLockConfig.from_env())
    await node.start()

    try:
        await asyncio.sleep(30)
    finally:
        await node.stop()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(run_lock_node())
