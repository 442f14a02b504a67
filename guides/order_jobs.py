"""Jobs used by ``order_fulfillment_example.py``.

They live in their own module so a worker process can import them by the
``order_jobs:FulfillOrder`` path stored on the queue.
"""

from durastep import Job


class ReserveStock(Job):
    async def perform(self, order_id, sku):
        print(f"Reserving {sku} for order {order_id}")


class FulfillOrder(Job):
    async def perform(self, order_id):
        await self.execute_workflow(
            unique_by=order_id,
            define=lambda w: (
                w.step("load_items")
                .step("reserve_stock", awaits="reservations")
                .step("notify", for_each="items")
                .step("close", transactional=True)
            ),
        )

    async def load_items(self, run):
        # a side effect wrapped in fetch happens once per order, even across retries
        await run.ctx.fetch("items", fallback=lambda: ["book", "lamp"])

    async def reservations(self):
        order_id = self.arguments[0]
        items = await self.ctx["items"]
        return [ReserveStock(order_id, sku) for sku in items]

    def notify(self, run, sku):
        print(f"{sku} reserved")

    async def close(self, run):
        # both writes commit together or not at all
        await run.ctx.set(status="closed", closed_items=await run.ctx["items"])
        print("Order closed")
