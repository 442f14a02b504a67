"""Example of a durable order workflow that fans out to child jobs.

Run a worker in another shell first, with this directory importable so the
worker can rebuild the jobs in ``order_jobs.py``:

    PYTHONPATH=guides durastep worker run

then enqueue an order with ``python guides/order_fulfillment_example.py 42``.
Both processes must share the store and queue, e.g.
``DURASTEP_DATABASE_URL=sqlite://orders.db DURASTEP_QUEUE=redis``.
"""

import asyncio
import sys

from durastep import get_engine
from order_jobs import FulfillOrder


async def main():
    order_id = int(sys.argv[1]) if len(sys.argv) > 1 else 1
    engine = get_engine()
    await engine.queue.connect()

    handle = await FulfillOrder(order_id).enqueue()
    print(f"✅ Enqueued order {order_id} as job {handle.job_id}")

    await engine.queue.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
