# issue_sync/runtime.py — Process-wide wiring of the sync engine's background parts
from fastapi import Request

from issue_sync.label_sync import LabelSyncService
from issue_sync.outbound import OutboundIssueSync
from issue_sync.outbound_queue import OutboundQueue
from task_service import EventBus


class SyncRuntime:
    """Event bus, outbound queue and the services that feed it.

    One instance lives on ``app.state.sync``; tests build their own with a
    test session factory and an ``httpx.MockTransport``.
    """

    def __init__(self, session_factory=None, transport=None, queue: OutboundQueue = None):
        self.session_factory = session_factory
        self.events = EventBus()
        self.queue = queue or OutboundQueue()
        self.label_sync = LabelSyncService(session_factory, transport)
        self.issue_sync = OutboundIssueSync(self.queue, session_factory, transport)
        self.issue_sync.register(self.events)

    async def start(self):
        await self.queue.start()

    async def stop(self):
        await self.queue.stop()

    def enqueue_label_sync(self, task_id: str, name: str, color: str) -> bool:
        return self.queue.submit(
            f"label-sync:{task_id}:{name}",
            lambda: self.label_sync.sync_label(task_id, name, color),
        )

    def enqueue_label_removal(self, task_id: str, name: str) -> bool:
        return self.queue.submit(
            f"label-remove:{task_id}:{name}",
            lambda: self.label_sync.remove_label(task_id, name),
        )


def get_sync_runtime(request: Request) -> SyncRuntime:
    """FastAPI dependency"""
    return request.app.state.sync
