"""
Main entry point untuk kvlock.

Contoh:
  python -m kvlock node
  python -m kvlock bucket user:1 --field name --count 25000
  python -m kvlock lock order:42 --lease 3 --wait 10
"""

import asyncio
import argparse
import logging
import sys

from kvlock.lock.facade import LockFacade
from kvlock.nodes.lock_node import LockNode
from kvlock.store.partitioner import KeyPartitioner
from kvlock.store.redis_store import RedisStore
from kvlock.utils.config import KVLockConfig


def setup_logging(config: KVLockConfig):
    """Setup logging configuration"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


async def run_node(config: KVLockConfig):
    """Run lock node sampai di-interrupt"""
    node = LockNode(config)
    await node.start()

    print(f"\n{'='*60}")
    print(f"  LOCK NODE STARTED ({node.facade.variant_name})")
    print(f"  Address: http://{config.node_host}:{config.node_port}")
    print(f"{'='*60}\n")

    try:
        # Keep running
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await node.stop()


async def run_lock_once(config: KVLockConfig, key: str, lease: float, wait: float) -> bool:
    """Acquire lalu release satu lock, untuk cek koneksi dan kontensi"""
    store = RedisStore.from_config(config)
    facade = LockFacade.from_config(config, store=store)
    try:
        handle = await facade.try_acquire(key, wait, lease)
        if handle is None:
            print(f"Lock {key} not acquired within {wait}s")
            return False
        print(f"Acquired {key} (token={handle.owner_token}, variant={handle.variant})")
        released = await facade.release(handle)
        print(f"Released {key}: {released}")
        return True
    finally:
        await store.close()


def show_bucket(config: KVLockConfig, key: str, field: str = None, count: int = None):
    """Print lokasi bucket / field untuk key"""
    partitioner = KeyPartitioner(
        enabled=True,
        bucket_count=count or config.effective_bucket_count
    )
    print(f"key:    {key}")
    print(f"bucket: {partitioner.bucket_of(key)} (of {partitioner.bucket_count})")
    if field is not None:
        print(f"field:  {partitioner.field_of(field)}")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='kvlock: Redis key bucketing and distributed locks')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('node', help='Run the HTTP lock node')

    bucket_parser = subparsers.add_parser('bucket', help='Show bucket and field for a key')
    bucket_parser.add_argument('key')
    bucket_parser.add_argument('--field', default=None)
    bucket_parser.add_argument('--count', type=int, default=None, help='Bucket count override')

    lock_parser = subparsers.add_parser('lock', help='Acquire and release a lock once')
    lock_parser.add_argument('key')
    lock_parser.add_argument('--lease', type=float, default=30.0)
    lock_parser.add_argument('--wait', type=float, default=0.0)
    lock_parser.add_argument('--variant', choices=['polling', 'managed'], default=None)
    lock_parser.add_argument('--fair', action='store_true')

    args = parser.parse_args()

    config = KVLockConfig.from_env()
    setup_logging(config)

    try:
        if args.command == 'bucket':
            show_bucket(config, args.key, args.field, args.count)
        elif args.command == 'lock':
            if args.variant or args.fair:
                config = config.with_overrides(
                    lock_variant=args.variant or config.lock_variant,
                    fair=args.fair or config.fair
                )
            ok = asyncio.run(run_lock_once(config, args.key, args.lease, args.wait))
            sys.exit(0 if ok else 1)
        else:
            config.display()
            asyncio.run(run_node(config))
    except KeyboardInterrupt:
        print("\nExiting...")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
