# Copyright (c) Syntropy Systems
"""Split one setup document into shards that cover its variation space.

Every ``"alternative-values"`` list in the base document becomes a node in a
chain below an empty root. Each split peels one value off the shallowest
multi-valued node whose parent is already resolved, hangs it on a new branch
and gives that branch its own copy of the remaining chain. After ``N - 1``
splits the graph has ``N`` leaves, and every root-to-leaf path assigns each
list a slice of its values. The slices of all shards partition the full
variation space.
"""
from __future__ import annotations

import logging
import math
import re
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ticketsweep.errors import SplitError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ALTERNATIVE_VALUES_PATTERN = re.compile(r'"alternative-values"\s*:\s*(\[[^\]]*\])')
NUMBER_PATTERN = re.compile(r"[-+]?[0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?")
NUMERIC_LIST_PATTERN = re.compile(
    r"^\[\s*(?:{num}(?:\s*,\s*{num})*)?\s*\]$".format(num=NUMBER_PATTERN.pattern)
)

ROOT = 0


@dataclass(frozen=True)
class ValueSlot:
    """Position and values of one alternative-values list in a document."""

    start: int
    end: int
    values: tuple[str, ...]


def collect_alternative_values(document: str) -> list[ValueSlot]:
    """Find every numeric alternative-values list, in document order.

    Lists holding anything but numbers are left out and never rewritten, as
    are empty lists, which offer no alternatives to split.
    """
    slots: list[ValueSlot] = []
    for match in ALTERNATIVE_VALUES_PATTERN.finditer(document):
        literal = match.group(1)
        if NUMERIC_LIST_PATTERN.match(literal) is None:
            logger.debug("Ignoring non-numeric alternative values at %d", match.start(1))
            continue
        values = tuple(NUMBER_PATTERN.findall(literal))
        if not values:
            continue
        slots.append(
            ValueSlot(
                start=match.start(1),
                end=match.end(1),
                values=values,
            )
        )
    return slots


def render_values(values: list[str]) -> str:
    """Render values as a bracketed list literal."""
    return "[ " + ", ".join(values) + " ]"


def rewrite_document(document: str, slots: list[ValueSlot], assignment: list[list[str]]) -> str:
    """Replace each slot's list with the assigned values.

    Spans are replaced back to front so earlier offsets stay valid.
    """
    if len(slots) != len(assignment):
        msg = f"Assignment covers {len(assignment)} lists, document has {len(slots)}"
        raise ValueError(msg)
    result = document
    for index in sorted(range(len(slots)), key=lambda i: slots[i].start, reverse=True):
        slot = slots[index]
        result = result[: slot.start] + render_values(assignment[index]) + result[slot.end :]
    return result


@dataclass
class GraphNode:
    """A node of the variation graph."""

    handle: int
    values: list[str]
    slot: int | None
    parent: int | None = None
    children: list[int] = field(default_factory=list)


class VariationGraph:
    """Arena of nodes addressed by integer handles."""

    nodes: dict[int, GraphNode]
    depth: int
    max_shards: int
    _next_handle: int

    def __init__(self) -> None:
        self.nodes = {}
        self.depth = 0
        self.max_shards = 1
        self._next_handle = ROOT
        _ = self.add_node([], None)

    @classmethod
    def chain(cls, slots: list[ValueSlot]) -> VariationGraph:
        """Build root -> first list -> second list -> ... in document order."""
        graph = cls()
        previous = ROOT
        for index, slot in enumerate(slots):
            current = graph.add_node(list(slot.values), index)
            graph.connect(previous, current)
            previous = current
        graph.depth = len(slots)
        graph.max_shards = math.prod(len(slot.values) for slot in slots) if slots else 1
        return graph

    def add_node(self, values: list[str], slot: int | None) -> int:
        """Add an unconnected node and return its handle."""
        handle = self._next_handle
        self._next_handle += 1
        self.nodes[handle] = GraphNode(handle=handle, values=values, slot=slot)
        return handle

    def connect(self, parent: int, child: int) -> None:
        """Hang child below parent."""
        self.nodes[parent].children.append(child)
        self.nodes[child].parent = parent

    def disconnect(self, parent: int, child: int) -> None:
        """Remove the edge between parent and child."""
        self.nodes[parent].children.remove(child)
        self.nodes[child].parent = None

    def neighbours(self, handle: int) -> list[int]:
        """Parent (if any) followed by children."""
        node = self.nodes[handle]
        parent = [] if node.parent is None else [node.parent]
        return parent + node.children

    def component(self, start: int) -> list[int]:
        """Every node reachable from start, in breadth-first order."""
        seen = {start}
        order = [start]
        queue = deque([start])
        while queue:
            for neighbour in self.neighbours(queue.popleft()):
                if neighbour not in seen:
                    seen.add(neighbour)
                    order.append(neighbour)
                    queue.append(neighbour)
        return order

    def copy_component(self, members: list[int], under: int) -> int:
        """Copy a cut-off component below another node; return the copy of its top."""
        top = members[0]
        copies = {top: self.add_node(list(self.nodes[top].values), self.nodes[top].slot)}
        self.connect(under, copies[top])
        for handle in members:
            for child in self.nodes[handle].children:
                copies[child] = self.add_node(list(self.nodes[child].values), self.nodes[child].slot)
                self.connect(copies[handle], copies[child])
        return copies[top]

    def shell(self, distance: int) -> list[int]:
        """Nodes exactly distance edges away from the root."""
        current = [ROOT]
        for _ in range(distance):
            current = [child for handle in current for child in self.nodes[handle].children]
        return current

    def leaves(self) -> list[int]:
        """Leaf nodes (excluding the root), in breadth-first order."""
        return [
            handle
            for handle in self.component(ROOT)
            if handle != ROOT and not self.nodes[handle].children
        ]

    def path_to_root(self, handle: int) -> list[int]:
        """Handles from the root down to handle."""
        path = [handle]
        while (parent := self.nodes[path[-1]].parent) is not None:
            path.append(parent)
        return path[::-1]

    def split_once(self) -> bool:
        """Perform one split; return False when nothing is left to split."""
        for distance in range(1, self.depth + 1):
            for handle in self.shell(distance):
                node = self.nodes[handle]
                if len(node.values) <= 1 or node.parent is None:
                    continue
                if len(self.nodes[node.parent].values) <= 1:
                    self._split_at(handle, node.parent)
                    return True
        return False

    def _split_at(self, handle: int, resolved: int) -> None:
        node = self.nodes[handle]
        value = node.values.pop(0)
        branch = self.add_node([value], node.slot)
        self.connect(resolved, branch)

        # The rest of the chain continues below the new branch as well
        for child in list(node.children):
            self.disconnect(handle, child)
            members = self.component(child)
            self.connect(handle, child)
            _ = self.copy_component(members, branch)
            break

    def split(self, shards: int) -> None:
        """Split until the graph has exactly ``shards`` leaves.

        Raises:
            SplitError: If shards is below one or above the number of
                distinct combinations.

        """
        if shards < 1:
            msg = f"Number of shards must be at least 1, got {shards}"
            raise SplitError(msg)
        if shards > self.max_shards:
            msg = (
                f"Cannot split into {shards} shards: the document only has "
                f"{self.max_shards} distinct combinations"
            )
            raise SplitError(msg)
        for _ in range(shards - 1):
            if not self.split_once():
                msg = f"Ran out of split points before reaching {shards} shards"
                raise SplitError(msg)

    def assignments(self) -> list[list[list[str]]]:
        """Per leaf, the values each list keeps along its root-to-leaf path."""
        result: list[list[list[str]]] = []
        for leaf in self.leaves():
            assignment: list[list[str]] = [[] for _ in range(self.depth)]
            for handle in self.path_to_root(leaf)[1:]:
                node = self.nodes[handle]
                if node.slot is not None:
                    assignment[node.slot] = list(node.values)
            result.append(assignment)
        return result


class VariationGraphSplitter:
    """Partition a setup document's alternative values into shards."""

    document: str
    slots: list[ValueSlot]

    def __init__(self, document: str) -> None:
        self.document = document
        self.slots = collect_alternative_values(document)

    @property
    def max_shards(self) -> int:
        """Largest number of shards the document can be split into."""
        return VariationGraph.chain(self.slots).max_shards

    def split_document(self, shards: int) -> list[str]:
        """Return one rewritten document per shard."""
        graph = VariationGraph.chain(self.slots)
        graph.split(shards)
        if not self.slots:
            return [self.document]

        documents: list[str] = []
        for assignment in graph.assignments():
            logger.debug("Shard values: %s", assignment)
            documents.append(rewrite_document(self.document, self.slots, assignment))
        return documents


def write_shards(
    setup_path: Path,
    output_dir: Path,
    shards: int,
    names: list[str] | None = None,
) -> list[Path]:
    """Split a setup file and write one file per shard.

    Shards are named ``<stem>_<n><suffix>`` unless names are given, in which
    case the first ``shards`` names are used.

    Raises:
        SplitError: If the document cannot be split or names run short.

    """
    if names is not None and len(names) < shards:
        msg = f"Got {len(names)} shard names for {shards} shards"
        raise SplitError(msg)

    documents = VariationGraphSplitter(setup_path.read_text()).split_document(shards)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    for index, document in enumerate(documents):
        name = names[index] if names is not None else f"{setup_path.stem}_{index + 1}"
        shard_path = output_dir / f"{name}{setup_path.suffix}"
        _ = shard_path.write_text(document)
        written.append(shard_path)
    logger.info("Wrote %d shard(s) of %s to %s", len(written), setup_path.name, output_dir)
    return written
