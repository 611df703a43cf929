"""
Integration tests for the dependency engine against a SQLite database.

Tests cover:
- Edge creation rules: self, duplicate, cycle, cross-project, fan-in, depth
- Removal semantics and activity records
- Blocked status and the one-hop resolution cascade
- Tolerance of dangling edges after out-of-band task deletion
"""

from __future__ import annotations

import asyncio
import uuid

import pytest

from app.core.errors import DependencyNotFoundError, DependencyValidationError
from app.models.project import Project
from app.core.database import session_scope
from app.services.graph import find_all_cycles
from taskflow_shared.schemas.common import ActivityAction, DependencyErrorCode, TaskStatus


async def _edge_count(dep_engine, project_id) -> int:
    return len(await dep_engine.store.list_project_edges(project_id))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateDependency:
    async def test_create_returns_persisted_edge(self, dep_engine, make_task, project):
        t1 = await make_task("T1")
        t2 = await make_task("T2")
        actor = uuid.uuid4()

        edge = await dep_engine.create_task_dependency(t2.id, t1.id, created_by=actor)

        assert edge.task_id == t2.id
        assert edge.depends_on_task_id == t1.id
        assert edge.project_id == project.id
        assert edge.created_by == actor
        assert edge.created_at is not None
        stored = await dep_engine.store.get(edge.id)
        assert stored is not None

    async def test_self_dependency_rejected(self, dep_engine, make_task, project):
        t1 = await make_task("T1")
        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(t1.id, t1.id)
        assert exc.value.code == DependencyErrorCode.SELF_DEPENDENCY
        assert await _edge_count(dep_engine, project.id) == 0

    async def test_self_dependency_rejected_for_unknown_task(self, dep_engine):
        tid = uuid.uuid4()
        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(tid, tid)
        assert exc.value.code == DependencyErrorCode.SELF_DEPENDENCY

    async def test_duplicate_rejected(self, dep_engine, make_task, project):
        a = await make_task("A")
        b = await make_task("B")
        await dep_engine.create_task_dependency(a.id, b.id)
        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(a.id, b.id)
        assert exc.value.code == DependencyErrorCode.DUPLICATE_EDGE
        assert exc.value.status_code == 409
        assert await _edge_count(dep_engine, project.id) == 1

    async def test_reverse_edge_is_a_cycle(self, dep_engine, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await dep_engine.create_task_dependency(a.id, b.id)
        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(b.id, a.id)
        assert exc.value.code == DependencyErrorCode.CYCLE_DETECTED
        assert exc.value.path == [a.id, b.id]

    async def test_three_node_cycle_leaves_two_edges(self, dep_engine, make_task, project):
        t1 = await make_task("T1")
        t2 = await make_task("T2")
        t3 = await make_task("T3")
        await dep_engine.create_task_dependency(t1.id, t2.id)
        await dep_engine.create_task_dependency(t2.id, t3.id)

        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(t3.id, t1.id)

        assert exc.value.code == DependencyErrorCode.CYCLE_DETECTED
        assert await _edge_count(dep_engine, project.id) == 2

    async def test_unknown_task_not_found(self, dep_engine, make_task):
        t1 = await make_task("T1")
        with pytest.raises(DependencyNotFoundError):
            await dep_engine.create_task_dependency(t1.id, uuid.uuid4())

    async def test_cross_project_rejected(self, dep_engine, make_task, session_factory):
        async with session_scope(session_factory) as session:
            other = Project(name="Other")
            session.add(other)
        a = await make_task("A")
        b = await make_task("B", project_id=other.id)

        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(a.id, b.id)
        assert exc.value.code == DependencyErrorCode.CROSS_PROJECT
        assert exc.value.status_code == 422

    async def test_too_many_dependencies(self, dep_engine, make_task):
        dep_engine.settings = dep_engine.settings.model_copy(update={"max_dependencies_per_task": 2})
        t = await make_task("T")
        prereqs = [await make_task(f"P{i}") for i in range(3)]
        await dep_engine.create_task_dependency(t.id, prereqs[0].id)
        await dep_engine.create_task_dependency(t.id, prereqs[1].id)

        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(t.id, prereqs[2].id)
        assert exc.value.code == DependencyErrorCode.TOO_MANY_DEPENDENCIES

    async def test_max_depth(self, dep_engine, make_task):
        dep_engine.settings = dep_engine.settings.model_copy(update={"max_dependency_depth": 2})
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        d = await make_task("D")
        await dep_engine.create_task_dependency(b.id, c.id)  # B -> C: depth 1
        await dep_engine.create_task_dependency(a.id, b.id)  # A -> B -> C: depth 2

        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(d.id, a.id)  # D -> A -> B -> C: depth 3
        assert exc.value.code == DependencyErrorCode.MAX_DEPTH_EXCEEDED

    async def test_successful_creates_stay_acyclic(self, dep_engine, make_task, project):
        """Try every ordered pair over five tasks; whatever succeeds is a DAG."""
        from app.services.graph import find_all_cycles

        tasks = [await make_task(f"T{i}") for i in range(5)]
        for a in tasks:
            for b in tasks:
                try:
                    await dep_engine.create_task_dependency(a.id, b.id)
                except DependencyValidationError:
                    pass

        edges = await dep_engine.store.list_project_edges(project.id)
        assert edges
        assert find_all_cycles(edges) == []

    async def test_activity_recorded(self, dep_engine, make_task):
        a = await make_task("A")
        b = await make_task("B")
        actor = uuid.uuid4()
        edge = await dep_engine.create_task_dependency(a.id, b.id, created_by=actor)
        await dep_engine.remove_task_dependency(edge.id, actor_id=actor)

        entries = await dep_engine.get_dependency_activity(a.id)
        assert [e.action for e in entries] == [
            ActivityAction.DEPENDENCY_ADDED.value,
            ActivityAction.DEPENDENCY_REMOVED.value,
        ]
        assert entries[0].payload["depends_on_task_id"] == str(b.id)
        assert entries[1].actor_id == actor


# ---------------------------------------------------------------------------
# Write-then-verify
# ---------------------------------------------------------------------------


class TestConcurrentCreate:
    async def test_racing_insert_is_rolled_back(self, dep_engine, make_task, project, monkeypatch):
        """
        Simulate a concurrent writer: between our validation and our insert,
        another request commits B -> A. Our A -> B must be undone and, after
        retrying with fresh validation, reported as a cycle.
        """
        a = await make_task("A")
        b = await make_task("B")
        store = dep_engine.store
        real_insert = store.insert
        raced = {"done": False}

        async def racing_insert(task_id, depends_on_task_id, project_id, created_by=None):
            if not raced["done"]:
                raced["done"] = True
                await real_insert(b.id, a.id, project_id)
            return await real_insert(task_id, depends_on_task_id, project_id, created_by=created_by)

        monkeypatch.setattr(store, "insert", racing_insert)

        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(a.id, b.id)

        assert exc.value.code == DependencyErrorCode.CYCLE_DETECTED
        edges = await store.list_project_edges(project.id)
        assert [(e.task_id, e.depends_on_task_id) for e in edges] == [(b.id, a.id)]
        activity = await dep_engine.get_dependency_activity(a.id)
        assert activity == []

    async def test_cancelled_rollback_still_discards(self, dep_engine, make_task, project, monkeypatch):
        """
        The caller is cancelled while the rollback of a conflicting insert is
        in flight. The discard must finish before the cancellation surfaces,
        so no cycle is persisted.
        """
        a = await make_task("A")
        b = await make_task("B")
        store = dep_engine.store
        real_insert = store.insert
        real_discard = store.discard
        discarding = asyncio.Event()
        discarded = asyncio.Event()

        async def racing_insert(task_id, depends_on_task_id, project_id, created_by=None):
            await real_insert(b.id, a.id, project_id)
            monkeypatch.setattr(store, "insert", real_insert)
            return await real_insert(task_id, depends_on_task_id, project_id, created_by=created_by)

        async def slow_discard(edge_id):
            discarding.set()
            await asyncio.sleep(0.05)
            await real_discard(edge_id)
            discarded.set()

        monkeypatch.setattr(store, "insert", racing_insert)
        monkeypatch.setattr(store, "discard", slow_discard)

        job = asyncio.create_task(dep_engine.create_task_dependency(a.id, b.id))
        await discarding.wait()
        job.cancel()
        with pytest.raises(asyncio.CancelledError):
            await job
        assert discarded.is_set()

        edges = await store.list_project_edges(project.id)
        assert [(e.task_id, e.depends_on_task_id) for e in edges] == [(b.id, a.id)]
        assert find_all_cycles(edges) == []

    async def test_cancelled_verify_discards_insert(self, dep_engine, make_task, project, monkeypatch):
        a = await make_task("A")
        b = await make_task("B")
        real_graph_edges = dep_engine._graph_edges
        reads = []
        verifying = asyncio.Event()

        async def slow_second_read(dependent, prerequisite):
            reads.append(dependent.id)
            if len(reads) == 2:
                verifying.set()
                await asyncio.sleep(10)
            return await real_graph_edges(dependent, prerequisite)

        monkeypatch.setattr(dep_engine, "_graph_edges", slow_second_read)

        job = asyncio.create_task(dep_engine.create_task_dependency(a.id, b.id))
        await verifying.wait()
        job.cancel()
        with pytest.raises(asyncio.CancelledError):
            await job

        assert await dep_engine.store.list_project_edges(project.id) == []
        assert await dep_engine.get_dependency_activity(a.id) == []

    async def test_retries_exhausted_surface_cycle(self, dep_engine, make_task, monkeypatch):
        from app.core.errors import ConsistencyError

        a = await make_task("A")
        b = await make_task("B")
        calls = []

        async def always_conflicts(*args):
            calls.append(args)
            raise ConsistencyError("conflict")

        monkeypatch.setattr(dep_engine, "_create_once", always_conflicts)
        with pytest.raises(DependencyValidationError) as exc:
            await dep_engine.create_task_dependency(a.id, b.id)
        assert exc.value.code == DependencyErrorCode.CYCLE_DETECTED
        assert len(calls) == dep_engine.settings.create_retry_attempts


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


class TestRemoveDependency:
    async def test_remove_twice(self, dep_engine, make_task, project):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        first = await dep_engine.create_task_dependency(a.id, b.id)
        other = await dep_engine.create_task_dependency(a.id, c.id)

        await dep_engine.remove_task_dependency(first.id)
        with pytest.raises(DependencyNotFoundError) as exc:
            await dep_engine.remove_task_dependency(first.id)

        assert exc.value.code == DependencyErrorCode.NOT_FOUND
        edges = await dep_engine.store.list_project_edges(project.id)
        assert [e.id for e in edges] == [other.id]

    async def test_removed_edge_can_be_recreated(self, dep_engine, make_task):
        a = await make_task("A")
        b = await make_task("B")
        edge = await dep_engine.create_task_dependency(a.id, b.id)
        await dep_engine.remove_task_dependency(edge.id)
        again = await dep_engine.create_task_dependency(b.id, a.id)
        assert again.task_id == b.id


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_dependencies_and_dependents(self, dep_engine, make_task):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        await dep_engine.create_task_dependency(a.id, b.id)
        await dep_engine.create_task_dependency(c.id, b.id)

        deps = await dep_engine.get_task_dependencies(a.id)
        assert [e.depends_on_task_id for e in deps] == [b.id]

        dependents = await dep_engine.get_task_dependents(b.id)
        assert {e.task_id for e in dependents} == {a.id, c.id}
        assert await dep_engine.get_task_dependencies(b.id) == []

    async def test_dangling_edges_omitted(self, dep_engine, make_task, delete_task):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        d = await make_task("D")
        await dep_engine.create_task_dependency(a.id, b.id)
        await dep_engine.create_task_dependency(a.id, c.id)
        await dep_engine.create_task_dependency(d.id, b.id)
        await delete_task(c.id)
        await delete_task(d.id)

        deps = await dep_engine.get_task_dependencies(a.id)
        assert [e.depends_on_task_id for e in deps] == [b.id]
        dependents = await dep_engine.get_task_dependents(b.id)
        assert [e.task_id for e in dependents] == [a.id]

    async def test_validate_circular(self, dep_engine, make_task):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        await dep_engine.create_task_dependency(a.id, b.id)
        await dep_engine.create_task_dependency(b.id, c.id)

        assert await dep_engine.validate_circular_dependency(c.id, a.id) is True
        assert await dep_engine.validate_circular_dependency(a.id, c.id) is False
        assert await dep_engine.validate_circular_dependency(a.id, a.id) is True
        assert await dep_engine.find_dependency_path(a.id, c.id) == [a.id, b.id, c.id]

    async def test_validate_circular_unknown_tasks(self, dep_engine):
        assert await dep_engine.validate_circular_dependency(uuid.uuid4(), uuid.uuid4()) is False


# ---------------------------------------------------------------------------
# Block status and resolution
# ---------------------------------------------------------------------------


class TestBlockStatus:
    async def test_no_dependencies_never_blocked(self, dep_engine, make_task):
        t = await make_task("T")
        status = await dep_engine.check_task_blocked(t.id)
        assert status.is_blocked is False
        assert status.blocking_tasks == []
        assert status.total_dependencies == 0

    async def test_scenario_single_prerequisite(self, dep_engine, make_task, set_status):
        t1 = await make_task("T1")
        t2 = await make_task("T2")
        await dep_engine.create_task_dependency(t2.id, t1.id)

        status = await dep_engine.check_task_blocked(t2.id)
        assert status.is_blocked is True
        assert [t.id for t in status.blocking_tasks] == [t1.id]
        assert status.total_dependencies == 1

        await set_status(t1.id, TaskStatus.COMPLETED.value)
        unblocked = await dep_engine.resolve_dependencies(t1.id)
        assert [t.id for t in unblocked] == [t2.id]

    async def test_every_non_completed_status_blocks(self, dep_engine, make_task, set_status):
        p = await make_task("P")
        t = await make_task("T")
        await dep_engine.create_task_dependency(t.id, p.id)
        for status in (TaskStatus.NOT_STARTED, TaskStatus.IN_PROGRESS, TaskStatus.PAUSED):
            await set_status(p.id, status.value)
            assert (await dep_engine.check_task_blocked(t.id)).is_blocked is True
        await set_status(p.id, TaskStatus.COMPLETED.value)
        assert (await dep_engine.check_task_blocked(t.id)).is_blocked is False

    async def test_scenario_two_prerequisites(self, dep_engine, make_task, set_status):
        t4 = await make_task("T4")
        t5 = await make_task("T5")
        t6 = await make_task("T6")
        await dep_engine.create_task_dependency(t4.id, t5.id)
        await dep_engine.create_task_dependency(t4.id, t6.id)

        await set_status(t5.id, TaskStatus.COMPLETED.value)
        assert await dep_engine.resolve_dependencies(t5.id) == []
        status = await dep_engine.check_task_blocked(t4.id)
        assert [t.id for t in status.blocking_tasks] == [t6.id]
        assert status.total_dependencies == 2

        await set_status(t6.id, TaskStatus.COMPLETED.value)
        assert [t.id for t in await dep_engine.resolve_dependencies(t6.id)] == [t4.id]

    async def test_cascade_is_one_hop(self, dep_engine, make_task, set_status):
        """A <- B <- C: completing A unblocks B only; C still waits on B's own status."""
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        await dep_engine.create_task_dependency(b.id, a.id)
        await dep_engine.create_task_dependency(c.id, b.id)

        await set_status(a.id, TaskStatus.COMPLETED.value)
        unblocked = await dep_engine.resolve_dependencies(a.id)
        assert [t.id for t in unblocked] == [b.id]
        assert (await dep_engine.check_task_blocked(c.id)).is_blocked is True

    async def test_resolution_is_idempotent(self, dep_engine, make_task, set_status):
        a = await make_task("A")
        b = await make_task("B")
        await dep_engine.create_task_dependency(b.id, a.id)
        await set_status(a.id, TaskStatus.COMPLETED.value)

        first = await dep_engine.resolve_dependencies(a.id)
        second = await dep_engine.resolve_dependencies(a.id)
        assert [t.id for t in first] == [t.id for t in second] == [b.id]

    async def test_resolution_does_not_change_status(self, dep_engine, make_task, set_status):
        a = await make_task("A")
        b = await make_task("B")
        await dep_engine.create_task_dependency(b.id, a.id)
        await set_status(a.id, TaskStatus.COMPLETED.value)

        await dep_engine.resolve_dependencies(a.id)
        assert await dep_engine.tasks.get_task_status(b.id) == TaskStatus.NOT_STARTED

    async def test_dangling_prerequisite_does_not_block(self, dep_engine, make_task, delete_task):
        a = await make_task("A")
        b = await make_task("B")
        await dep_engine.create_task_dependency(b.id, a.id)
        await delete_task(a.id)

        status = await dep_engine.check_task_blocked(b.id)
        assert status.is_blocked is False
        assert status.total_dependencies == 0

    async def test_dangling_dependent_omitted_from_resolution(
        self, dep_engine, make_task, set_status, delete_task
    ):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        await dep_engine.create_task_dependency(b.id, a.id)
        await dep_engine.create_task_dependency(c.id, a.id)
        await delete_task(c.id)
        await set_status(a.id, TaskStatus.COMPLETED.value)

        assert [t.id for t in await dep_engine.resolve_dependencies(a.id)] == [b.id]

    async def test_non_v4_task_ids_still_block(self, dep_engine, make_task, set_status):
        a = await make_task("A", task_id=uuid.uuid1())
        b = await make_task("B", task_id=uuid.uuid5(uuid.NAMESPACE_URL, "tasks/b"))
        await dep_engine.create_task_dependency(b.id, a.id)

        status = await dep_engine.check_task_blocked(b.id)
        assert status.is_blocked is True
        assert [t.id for t in status.blocking_tasks] == [a.id]

        await set_status(a.id, TaskStatus.COMPLETED.value)
        assert [t.id for t in await dep_engine.resolve_dependencies(a.id)] == [b.id]
