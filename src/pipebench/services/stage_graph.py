"""Stage dependency graph.

This module implements the graph algorithms behind dependency-aware
scheduling:
- Unknown dependency validation
- Circular dependency detection using an iterative DFS
- Topological sorting using Kahn's algorithm
- Wave grouping
"""

from collections import deque
from collections.abc import Iterable, Sequence

from pipebench.domain.models import Stage
from pipebench.infrastructure.exceptions import CircularDependencyError, UnknownDependencyError
from pipebench.infrastructure.logger import get_logger

logger = get_logger(__name__)


class StageGraph:
    """Dependency graph over a set of stages.

    Holds both edge directions:
    - dependents: dependency name -> stages that wait on it
    - dependencies: stage name -> stages it waits on

    Node order always follows stage declaration order so results are
    deterministic.
    """

    def __init__(self, stages: Sequence[Stage]):
        """Build the graph.

        Args:
            stages: Stages in declaration order

        Raises:
            UnknownDependencyError: If a stage depends on an undeclared name
        """
        self.names: list[str] = [stage.name for stage in stages]
        declared = set(self.names)

        self.dependencies: dict[str, set[str]] = {}
        self.dependents: dict[str, set[str]] = {name: set() for name in self.names}

        for stage in stages:
            for dependency in sorted(stage.dependencies):
                if dependency not in declared:
                    raise UnknownDependencyError(stage.name, dependency)
                self.dependents[dependency].add(stage.name)
            self.dependencies[stage.name] = set(stage.dependencies)

        self._position = {name: index for index, name in enumerate(self.names)}

    def detect_cycles(self) -> list[list[str]]:
        """Find dependency cycles using an iterative depth-first search with path tracking.

        Returns:
            Each cycle as a list of stage names whose first and last element
            are the same node (empty list if the graph is acyclic)

        Performance:
            O(V + E)
        """
        cycles: list[list[str]] = []
        visited: set[str] = set()

        for root in self.names:
            if root in visited:
                continue

            visited.add(root)
            path = [root]
            on_path = {root}
            stack = [iter(self._ordered(self.dependents[root]))]

            while stack:
                neighbor = next(stack[-1], None)
                if neighbor is None:
                    stack.pop()
                    on_path.discard(path.pop())
                elif neighbor in on_path:
                    cycle_start = path.index(neighbor)
                    cycles.append(path[cycle_start:] + [neighbor])
                elif neighbor not in visited:
                    visited.add(neighbor)
                    path.append(neighbor)
                    on_path.add(neighbor)
                    stack.append(iter(self._ordered(self.dependents[neighbor])))

        return cycles

    def validate(self) -> None:
        """Raise if the graph contains any cycle.

        Raises:
            CircularDependencyError: With every detected cycle path
        """
        cycles = self.detect_cycles()
        if cycles:
            logger.error("stage_cycle_detected", cycles=cycles)
            raise CircularDependencyError(cycles)

    def execution_order(self) -> list[str]:
        """Return a topological order using Kahn's algorithm.

        Raises:
            CircularDependencyError: If not every stage could be ordered
        """
        in_degree = {name: len(self.dependencies[name]) for name in self.names}
        queue = deque(name for name in self.names if in_degree[name] == 0)
        result: list[str] = []

        while queue:
            node = queue.popleft()
            result.append(node)

            for neighbor in self._ordered(self.dependents[node]):
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(result) != len(self.names):
            self.validate()
        return result

    def ready(self, completed: Iterable[str], pending: Iterable[str]) -> list[str]:
        """Stages in pending whose dependencies have all completed.

        A dependency counts as completed whether it succeeded or failed.
        """
        done = set(completed)
        return [name for name in pending if self.dependencies[name] <= done]

    def waves(self) -> list[list[str]]:
        """Group stages into waves of mutually independent stages.

        Each wave holds the stages whose dependencies all sit in earlier
        waves.
        """
        self.validate()
        completed: set[str] = set()
        pending = list(self.names)
        waves: list[list[str]] = []

        while pending:
            wave = self.ready(completed, pending)
            waves.append(wave)
            completed.update(wave)
            pending = [name for name in pending if name not in completed]

        return waves

    def _ordered(self, names: set[str]) -> list[str]:
        return sorted(names, key=self._position.__getitem__)
