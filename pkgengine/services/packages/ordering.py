# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Action Ordering

Single responsibility: Order plan actions along dependency edges.

Removals run first, dependents before their dependencies. Installs and
upgrades follow, dependencies before their dependents. Strongly connected
groups (dependency cycles) are kept together as one batch; batches are
emitted in topological order of the condensed graph using Kahn's algorithm,
ties broken by package name.
"""

import heapq
from typing import Callable, Dict, List, Optional, Set, Tuple

from pkgengine.models.package_models import Action, ActionType, PackageSpec


def dependency_edges(specs: Dict[str, PackageSpec]) -> Dict[str, Set[str]]:
    """
    Map each package name to the names (within specs) it depends on.

    Args:
        specs: Package specs keyed by name

    Returns:
        name -> set of dependency names, self edges dropped
    """
    edges: Dict[str, Set[str]] = {name: set() for name in specs}
    for name, spec in specs.items():
        for dep in spec.dependencies:
            for other_name, other in specs.items():
                if other_name != name and dep.satisfied_by(other):
                    edges[name].add(other_name)
    return edges


def strongly_connected_components(graph: Dict[str, Set[str]]) -> List[List[str]]:
    """
    Kosaraju's algorithm with iterative depth-first searches.

    Args:
        graph: Adjacency sets; every node must be a key

    Returns:
        Components, each sorted by name
    """
    finished: List[str] = []
    visited: Set[str] = set()

    for root in sorted(graph):
        if root in visited:
            continue
        visited.add(root)
        stack = [(root, iter(sorted(graph[root])))]
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if child not in visited:
                    visited.add(child)
                    stack.append((child, iter(sorted(graph[child]))))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                finished.append(node)

    transposed: Dict[str, Set[str]] = {node: set() for node in graph}
    for node, targets in graph.items():
        for target in targets:
            transposed[target].add(node)

    components = []
    assigned: Set[str] = set()
    for root in reversed(finished):
        if root in assigned:
            continue
        component = []
        assigned.add(root)
        stack = [root]
        while stack:
            node = stack.pop()
            component.append(node)
            for source in transposed[node]:
                if source not in assigned:
                    assigned.add(source)
                    stack.append(source)
        components.append(sorted(component))

    return components


def topological_batches(graph: Dict[str, Set[str]]) -> List[List[str]]:
    """
    Order the nodes so that every edge u -> v places u's batch first.

    Args:
        graph: Adjacency sets (u -> v means u must come before v)

    Returns:
        Batches in execution order; a batch holds one node or one cycle
    """
    components = strongly_connected_components(graph)
    component_of = {node: index for index, members in enumerate(components) for node in members}

    successors: Dict[int, Set[int]] = {index: set() for index in range(len(components))}
    in_degree = {index: 0 for index in range(len(components))}
    for node, targets in graph.items():
        for target in targets:
            source, dest = component_of[node], component_of[target]
            if source != dest and dest not in successors[source]:
                successors[source].add(dest)
                in_degree[dest] += 1

    # Kahn's algorithm, smallest member name first
    heap = [(components[index][0], index) for index, degree in in_degree.items() if degree == 0]
    heapq.heapify(heap)

    batches = []
    while heap:
        _, index = heapq.heappop(heap)
        batches.append(components[index])
        for successor in successors[index]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(heap, (components[successor][0], successor))

    return batches


def _phase(
    actions: List[Action],
    spec_of: Callable[[Action], Optional[PackageSpec]],
    dependents_first: bool
) -> Tuple[List[Action], List[List[str]]]:
    by_name = {action.name: action for action in actions}
    edges = dependency_edges({name: spec_of(action) for name, action in by_name.items()})

    if dependents_first:
        graph = edges
    else:
        graph = {name: set() for name in edges}
        for name, deps in edges.items():
            for dep in deps:
                graph[dep].add(name)

    batches = topological_batches(graph)
    ordered = [by_name[name] for batch in batches for name in batch]
    return ordered, batches


def order_actions(actions: List[Action]) -> Tuple[List[Action], List[List[str]]]:
    """
    Order plan actions: removals (dependents first), then installs and
    upgrades (dependencies first).

    Args:
        actions: Unordered actions, at most one per package name

    Returns:
        (ordered actions, batches of package names)
    """
    removals = [a for a in actions if a.type == ActionType.REMOVE]
    changes = [a for a in actions if a.type != ActionType.REMOVE]

    removal_order, removal_batches = _phase(removals, lambda a: a.current, dependents_first=True)
    change_order, change_batches = _phase(changes, lambda a: a.target, dependents_first=False)

    return removal_order + change_order, removal_batches + change_batches
