"""Example showing how to inspect stored executions from Python."""

import asyncio

from durastep import get_store


async def main():
    store = get_store()
    for execution in await store.list_executions(finished=False):
        print(f"📋 Execution {execution.id}: waiting at {execution.recover_to}")
        for entry in await store.list_entries(execution.id):
            print(f"   - {entry.step}: {entry.action} ({entry.timestamp:%H:%M:%S})")


if __name__ == "__main__":
    asyncio.run(main())
