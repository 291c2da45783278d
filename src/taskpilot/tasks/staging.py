# src/taskpilot/tasks/staging.py

"""
Undoable destructive mutations.

A delete with allow_undo=True soft-deletes the task and its subtasks and
returns a StagedDelete. Until it resolves, the staged delete can be:
- discarded: every snapshot is written back verbatim
- committed: the rows are hard-deleted (explicitly, or by the grace timer)

Only one staged mutation exists at a time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Literal

from ..core.ports import TaskRepo
from ..scheduling.models import Task

logger = logging.getLogger(__name__)

PendingPolicy = Literal["force_commit", "reject"]
PENDING_POLICIES: tuple[str, ...] = ("force_commit", "reject")


class NothingPendingError(RuntimeError):
    """Commit/discard was requested but no staged mutation is pending."""


class PendingMutationError(RuntimeError):
    """A new destructive action was rejected because another one is still pending."""


class StagedDelete:
    """
    One soft-deleted task tree awaiting commit or discard.

    commit() and discard() race safely with the grace timer: whichever
    resolves first wins, the others return False.
    """

    def __init__(
        self,
        store: TaskRepo,
        snapshots: tuple[Task, ...],
        *,
        grace_seconds: float | None = None,
        on_resolved: Callable[[StagedDelete], None] | None = None,
    ) -> None:
        if not snapshots:
            raise ValueError("StagedDelete needs at least one snapshot")
        self._store = store
        self._snapshots = snapshots
        self._grace_seconds = grace_seconds
        self._on_resolved = on_resolved
        self._lock = threading.Lock()
        self._resolved = False
        self._timer: threading.Timer | None = None

    @property
    def task_id(self) -> str:
        return self._snapshots[0].id

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self._snapshots]

    @property
    def snapshots(self) -> tuple[Task, ...]:
        return self._snapshots

    def start(self) -> None:
        if self._grace_seconds is None:
            return
        timer = threading.Timer(self._grace_seconds, self._auto_commit)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def is_pending(self) -> bool:
        with self._lock:
            return not self._resolved

    def commit(self) -> bool:
        if not self._resolve():
            return False
        self._store.delete(self.task_ids, allow_undo=False)
        logger.info("Staged delete committed task=%s rows=%d", self.task_id, len(self._snapshots))
        self._notify()
        return True

    def discard(self) -> bool:
        if not self._resolve():
            return False
        self._store.restore(self._snapshots)
        logger.info("Staged delete undone task=%s rows=%d", self.task_id, len(self._snapshots))
        self._notify()
        return True

    # ---- internals ----

    def _resolve(self) -> bool:
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
            timer = self._timer
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()
        return True

    def _notify(self) -> None:
        if self._on_resolved is not None:
            self._on_resolved(self)

    def _auto_commit(self) -> None:
        try:
            if self.commit():
                logger.debug("Grace window elapsed for task=%s", self.task_id)
        except Exception:
            logger.exception("Auto-commit of staged delete failed task=%s", self.task_id)


class MutationStaging:
    def __init__(
        self,
        store: TaskRepo,
        *,
        grace_seconds: float | None = 5.0,
        pending_policy: PendingPolicy = "force_commit",
    ) -> None:
        if pending_policy not in PENDING_POLICIES:
            raise ValueError(f"unknown pending_policy: {pending_policy!r}")
        self._store = store
        self._grace_seconds = grace_seconds
        self._policy = pending_policy
        self._lock = threading.RLock()
        self._pending: StagedDelete | None = None

    @property
    def pending(self) -> StagedDelete | None:
        with self._lock:
            staged = self._pending
        return staged if staged is not None and staged.is_pending() else None

    def has_pending(self) -> bool:
        return self.pending is not None

    def delete_task(self, task: Task, allow_undo: bool = False) -> StagedDelete | None:
        """
        Delete `task` and all of its subtasks.

        Returns the StagedDelete when allow_undo is set, otherwise None.
        """
        self._settle_prior()

        snapshots = self._collect_tree(task)
        ids = [t.id for t in snapshots]

        if not allow_undo:
            self._store.delete(ids, allow_undo=False)
            logger.info("Task deleted task=%s rows=%d", task.id, len(ids))
            return None

        self._store.delete(ids, allow_undo=True)
        staged = StagedDelete(
            self._store,
            tuple(snapshots),
            grace_seconds=self._grace_seconds,
            on_resolved=self._clear,
        )
        with self._lock:
            self._pending = staged
        staged.start()
        logger.info("Task soft-deleted task=%s rows=%d grace=%s", task.id, len(ids), self._grace_seconds)
        return staged

    def commit_pending_changes(self) -> None:
        staged = self._require_pending()
        if not staged.commit():
            raise NothingPendingError("staged delete was already resolved")

    def discard_pending_changes(self) -> None:
        staged = self._require_pending()
        if not staged.discard():
            raise NothingPendingError("staged delete was already resolved")

    # ---- internals ----

    def _settle_prior(self) -> None:
        prior = self.pending
        if prior is None:
            return
        if self._policy == "reject":
            raise PendingMutationError(f"delete of task {prior.task_id} is still pending")
        logger.debug("Force-committing pending delete task=%s", prior.task_id)
        prior.commit()

    def _require_pending(self) -> StagedDelete:
        staged = self.pending
        if staged is None:
            raise NothingPendingError("no staged mutation is pending")
        return staged

    def _clear(self, staged: StagedDelete) -> None:
        with self._lock:
            if self._pending is staged:
                self._pending = None

    def _collect_tree(self, task: Task) -> list[Task]:
        root = self._store.get(task.id) or task
        out: list[Task] = [root]
        seen = {root.id}
        stack = [root.id]
        while stack:
            parent_id = stack.pop()
            for child in self._store.list_subtasks(parent_id):
                if child.id in seen:
                    continue
                seen.add(child.id)
                out.append(child)
                stack.append(child.id)
        return out
