"""Admin API: tasks, history and queues.

Every route requires X-Admin-Token, except unsubscribing from a task.
"""

from fastapi import APIRouter

from reporting.admin import queues, tasks

router = APIRouter()
router.include_router(tasks.router)
router.include_router(tasks.public_router)
router.include_router(queues.router)

__all__ = ["router"]
