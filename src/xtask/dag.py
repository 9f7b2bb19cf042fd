# dag.py
from __future__ import annotations

from typing import Iterable, Iterator, List, Mapping, Set, Tuple

from .errors import CycleError, TaskNotFoundError
from .schema import TaskDefinition


def find_cycles(tasks: Mapping[str, TaskDefinition]) -> List[str]:
    """
    Walk the ``needs`` graph from every task with an explicit stack.

    Returns every implicated id: each start task whose walk revisits a task
    already on the stack, plus the members of the cycle found. Needs that do
    not name a known task are ignored here.
    """
    implicated: List[str] = []
    done: Set[str] = set()
    # finished tasks whose walk reached a cycle
    reaches_cycle: Set[str] = set()

    def mark(task_id: str) -> None:
        if task_id not in implicated:
            implicated.append(task_id)

    for start in tasks:
        if start in done:
            if start in reaches_cycle:
                mark(start)
            continue

        path: List[str] = [start]
        frames: List[Tuple[str, Iterator[str]]] = [(start, iter(tasks[start].needs))]
        found = False
        while frames:
            task_id, deps = frames[-1]
            dep = None if found else next(deps, None)
            if dep is None:
                frames.pop()
                path.pop()
                done.add(task_id)
                if found:
                    reaches_cycle.add(task_id)
                continue
            if dep in path:
                for member in path[path.index(dep):]:
                    mark(member)
                found = True
            elif dep in done:
                found = dep in reaches_cycle
            elif dep in tasks:
                path.append(dep)
                frames.append((dep, iter(tasks[dep].needs)))

        if found:
            mark(start)

    return implicated


def check_acyclic(tasks: Mapping[str, TaskDefinition], file: str | None = None) -> None:
    cycles = find_cycles(tasks)
    if cycles:
        raise CycleError.from_ids(cycles, file=file)


def resolve_order(
    targets: Iterable[str],
    tasks: Mapping[str, TaskDefinition],
    file: str | None = None,
) -> List[TaskDefinition]:
    """
    Dependency closure of ``targets``, dependencies first.

    Each task appears exactly once. An unknown id raises TaskNotFoundError.
    """
    ordered: List[TaskDefinition] = []
    seen: Set[str] = set()

    def lookup(task_id: str, needed_by: str | None) -> TaskDefinition:
        task = tasks.get(task_id)
        if task is None:
            details = {"needed_by": needed_by} if needed_by else {}
            raise TaskNotFoundError(f"unknown task: {task_id}", file=file, details=details)
        return task

    for target in targets:
        if target in seen:
            continue
        root = lookup(target, None)
        path: List[str] = [target]
        frames: List[Tuple[str, TaskDefinition, Iterator[str]]] = [(target, root, iter(root.needs))]
        while frames:
            task_id, task, deps = frames[-1]
            dep = next(deps, None)
            if dep is None:
                frames.pop()
                path.pop()
                seen.add(task_id)
                ordered.append(task)
                continue
            if dep in seen:
                continue
            needed = lookup(dep, task_id)
            if dep in path:
                raise CycleError.from_ids(path[path.index(dep):], file=file)
            path.append(dep)
            frames.append((dep, needed, iter(needed.needs)))

    return ordered
