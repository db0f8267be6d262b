"""Nested wall-clock timers for one run.

A :class:`TimingContext` is created by the orchestrator and handed to each
stage; ``to_dict`` gives the structure dumped to ``timings.json``.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class TimerNode:
    name: str
    n_calls: int = 0
    time_ns: int = 0
    children: dict[str, "TimerNode"] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_calls": self.n_calls,
            "time_ns": self.time_ns,
            "inner_timers": {name: child.to_dict() for name, child in self.children.items()},
        }


class TimingContext:
    def __init__(self, name: str = "pyscf-json"):
        self.name = name
        self.reset()

    def reset(self) -> None:
        self._root = TimerNode(self.name)
        self._stack = [self._root]
        self._started_ns = time.perf_counter_ns()

    @contextmanager
    def span(self, name: str) -> Iterator[TimerNode]:
        parent = self._stack[-1]
        node = parent.children.get(name)
        if node is None:
            node = parent.children[name] = TimerNode(name)
        self._stack.append(node)
        start = time.perf_counter_ns()
        try:
            yield node
        finally:
            node.time_ns += time.perf_counter_ns() - start
            node.n_calls += 1
            self._stack.pop()

    def total_time_ns(self) -> int:
        return time.perf_counter_ns() - self._started_ns

    def to_dict(self) -> dict[str, Any]:
        payload = self._root.to_dict()
        payload["n_calls"] = 1
        payload["time_ns"] = sum(child.time_ns for child in self._root.children.values())
        payload["total_time_ns"] = self.total_time_ns()
        return payload

    def format_table(self) -> str:
        total_ns = max(self.total_time_ns(), 1)
        header = f"{'Section':<40} {'ncalls':>8} {'time':>12} {'%tot':>7}"
        rule = "-" * len(header)
        lines = [rule, f"{self.name}: {total_ns / 1e9:.3f}s total", rule, header, rule]

        def _walk(node: TimerNode, depth: int) -> None:
            for child in node.children.values():
                label = "  " * depth + child.name
                lines.append(
                    f"{label:<40} {child.n_calls:>8d} {child.time_ns / 1e9:>11.3f}s "
                    f"{100.0 * child.time_ns / total_ns:>6.1f}%"
                )
                _walk(child, depth + 1)

        _walk(self._root, 0)
        lines.append(rule)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format_table()


__all__ = ["TimerNode", "TimingContext"]
