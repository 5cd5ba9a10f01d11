from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from .recurrence import replicate_completed_task
from .store import list_unreplicated_completed_tasks


logger = logging.getLogger("taskhub.sweep")


@dataclass
class ReplicatedTask:
    original_id: int
    new_id: int
    title: str


@dataclass
class SweepReport:
    processed: int = 0
    created: int = 0
    failed: int = 0
    replicated: list[ReplicatedTask] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.processed and not self.failed:
            return "No completed recurring tasks to process"
        return f"Processed {self.processed} recurring tasks, created {self.created} new tasks"


def sweep(db: Session) -> SweepReport:
    """Replicate completed recurring tasks whose inline replication never ran.

    One task's failure is logged and skipped. Running this repeatedly is safe:
    a replicated task has its repeat interval cleared and drops out of the scan.
    """
    report = SweepReport()
    tasks = list_unreplicated_completed_tasks(db)
    if not tasks:
        return report

    # Ids and titles first: commits inside replication expire the loaded rows.
    pending = [(int(t.id), t.title, t) for t in tasks]
    for task_id, title, task in pending:
        try:
            result = replicate_completed_task(db, task)
        except Exception:
            db.rollback()
            report.failed += 1
            logger.exception("Sweep: error processing recurring task %s", task_id)
            continue

        report.processed += 1
        if result.created:
            report.created += 1
            report.replicated.append(ReplicatedTask(original_id=task_id, new_id=int(result.new_task.id), title=title))
            logger.info("Sweep: replicated completed task %s as %s", task_id, result.new_task.id)
        elif result.skipped is not None:
            logger.info("Sweep: skipped task %s: %s", task_id, result.skipped)

    logger.info("Sweep finished: %s", report.message)
    return report
