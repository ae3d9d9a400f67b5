"""Collision-free automatic layout for flow graphs.

``compute_layout`` is a pure function: it reads nodes and edges and returns
a new ``node id -> Position`` mapping without touching the graph.

Every placement goes through an ``OccupancyGrid``. A node box (padded by
``LayoutOptions.gap``) is only accepted when none of the grid cells it covers
is occupied, and the cells are marked as soon as it is placed, so two boxes
can never overlap. Placement always succeeds: the spiral search falls back to
a free-cell scan and finally to a spot right of everything placed so far.

Layout order:

1. Weakly-connected components, largest first.
2. Per component, a main path (greedy most-connected child from each
   in-degree-0 node, longest kept) laid out left to right.
3. Remaining component nodes placed next to an already placed neighbour at
   fixed offsets (above, below, left, right, diagonals).
4. Components after the first start right of, below, above or left of the
   current bounds, then wherever a coarse scan finds room.
5. Nodes without any edge go in a row below everything else.
"""

from __future__ import annotations

import math
from collections import defaultdict, deque
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any

from questionflow.graph.algorithms import natural_sort_key, weakly_connected_components
from questionflow.graph.models import AnswerNode, OutcomeNode, Position, QuestionNode
from questionflow.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from questionflow.graph.models import Edge, Node

log = get_logger(__name__)


@dataclass
class LayoutOptions:
    """Sizes and spacing used by the layout engine.

    All distances are canvas units.
    """

    cell_size: float = 50.0
    gap: float = 40.0
    horizontal_spacing: float = 450.0
    vertical_spacing: float = 320.0
    component_gap: float = 200.0
    start_x: float = 150.0
    start_y: float = 150.0
    max_width: float = 4000.0
    max_height: float = 4000.0
    search_radius: int = 30
    question_width: float = 350.0
    question_height: float = 200.0
    answer_width: float = 350.0
    answer_height: float = 180.0
    answer_row_height: float = 40.0
    outcome_width: float = 300.0
    outcome_height: float = 160.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LayoutOptions:
        """Build options from a config mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        return cls(**values)

    def node_size(self, node: Node) -> tuple[float, float]:
        """Width and height of a node's box."""
        if isinstance(node, QuestionNode):
            return self.question_width, self.question_height
        if isinstance(node, OutcomeNode):
            return self.outcome_width, self.outcome_height
        if isinstance(node, AnswerNode):
            rows = len(node.variants) + len(node.combinations)
            return self.answer_width, self.answer_height + rows * self.answer_row_height
        raise TypeError(f"No box size for {type(node).__name__}")


class OccupancyGrid:
    """Set of occupied cells; a box covers cells ``floor(x/c) .. floor((x+w)/c)``.

    Coverage is inclusive at both ends, so boxes whose cell ranges are
    disjoint on either axis are strictly separated on that axis.
    """

    def __init__(self, cell_size: float, gap: float = 0.0) -> None:
        self.cell_size = cell_size
        self.gap = gap
        self._cells: set[tuple[int, int]] = set()
        self._boxes: list[tuple[float, float, float, float]] = []

    def _cells_for(self, x: float, y: float, w: float, h: float) -> Iterator[tuple[int, int]]:
        c = self.cell_size
        for col in range(math.floor(x / c), math.floor((x + w + self.gap) / c) + 1):
            for row in range(math.floor(y / c), math.floor((y + h + self.gap) / c) + 1):
                yield col, row

    def is_free(self, x: float, y: float, w: float, h: float) -> bool:
        return not any(cell in self._cells for cell in self._cells_for(x, y, w, h))

    def mark(self, x: float, y: float, w: float, h: float) -> None:
        self._cells.update(self._cells_for(x, y, w, h))
        self._boxes.append((x, y, x + w, y + h))

    def bounds(self) -> tuple[float, float, float, float] | None:
        """``(min_x, min_y, max_x, max_y)`` of everything marked, or None."""
        if not self._boxes:
            return None
        return (
            min(b[0] for b in self._boxes),
            min(b[1] for b in self._boxes),
            max(b[2] for b in self._boxes),
            max(b[3] for b in self._boxes),
        )

    def find_free(self, x: float, y: float, w: float, h: float, radius: int) -> tuple[float, float]:
        """Nearest free top-left corner to ``(x, y)`` for a ``w x h`` box.

        Searches rings of growing radius (one cell per step), then scans the
        cells around the occupied area, then gives up and goes right of
        everything placed.
        """
        if self.is_free(x, y, w, h):
            return x, y
        step = self.cell_size
        for r in range(1, radius + 1):
            ring = [
                (dx, dy)
                for dx in range(-r, r + 1)
                for dy in range(-r, r + 1)
                if max(abs(dx), abs(dy)) == r
            ]
            ring.sort(key=lambda d: (d[0] ** 2 + d[1] ** 2, d[1], d[0]))
            for dx, dy in ring:
                cx, cy = x + dx * step, y + dy * step
                if self.is_free(cx, cy, w, h):
                    return cx, cy

        bounds = self.bounds()
        if bounds is not None:
            min_x, min_y, max_x, max_y = bounds
            row = math.floor(min_y / step)
            while row * step <= max_y + h:
                col = math.floor(min_x / step)
                while col * step <= max_x + w:
                    if self.is_free(col * step, row * step, w, h):
                        return col * step, row * step
                    col += 1
                row += 1
            log.debug("layout_fallback_far_right", x=x, y=y)
            return max_x + self.gap + step, y
        return x, y


class _Placer:
    """Places nodes onto a shared grid and records their positions."""

    def __init__(self, nodes: Mapping[str, Node], options: LayoutOptions) -> None:
        self.nodes = nodes
        self.options = options
        self.grid = OccupancyGrid(options.cell_size, options.gap)
        self.positions: dict[str, Position] = {}

    def size(self, node_id: str) -> tuple[float, float]:
        return self.options.node_size(self.nodes[node_id])

    def try_place(self, node_id: str, x: float, y: float) -> bool:
        w, h = self.size(node_id)
        if not self.grid.is_free(x, y, w, h):
            return False
        self.grid.mark(x, y, w, h)
        self.positions[node_id] = Position(x=x, y=y)
        return True

    def place_near(self, node_id: str, x: float, y: float) -> Position:
        w, h = self.size(node_id)
        fx, fy = self.grid.find_free(x, y, w, h, self.options.search_radius)
        self.grid.mark(fx, fy, w, h)
        position = Position(x=fx, y=fy)
        self.positions[node_id] = position
        return position


def find_main_path(component: list[str], edges: list[Edge]) -> list[str]:
    """Longest greedy path through a component.

    From each in-degree-0 node (natural order), repeatedly step to the
    unvisited child with the most total connections; ties go to the
    naturally smaller id. The longest walk wins, the earliest start on ties.
    """
    members = set(component)
    children: dict[str, list[str]] = defaultdict(list)
    degree: dict[str, int] = dict.fromkeys(component, 0)
    in_degree: dict[str, int] = dict.fromkeys(component, 0)
    for edge in edges:
        if edge.source in members and edge.target in members:
            children[edge.source].append(edge.target)
            degree[edge.source] += 1
            degree[edge.target] += 1
            in_degree[edge.target] += 1

    starts = [nid for nid in component if in_degree[nid] == 0] or component[:1]
    best: list[str] = []
    for start in starts:
        walk = [start]
        seen = {start}
        current = start
        while True:
            options = [c for c in children.get(current, []) if c not in seen]
            if not options:
                break
            current = min(options, key=lambda c: (-degree[c], natural_sort_key(c)))
            walk.append(current)
            seen.add(current)
        if len(walk) > len(best):
            best = walk
    return best


def _estimate_extent(component: list[str], main_path: list[str], placer: _Placer) -> tuple[float, float]:
    opts = placer.options
    width = max(len(main_path), 1) * opts.horizontal_spacing
    branch_count = len(component) - len(main_path)
    rows = 1 + math.ceil(branch_count / max(len(main_path), 1))
    tallest = max(placer.size(nid)[1] for nid in component)
    return width, rows * max(opts.vertical_spacing, tallest)


def _component_origin(
    component: list[str],
    main_path: list[str],
    placer: _Placer,
    start: tuple[float, float],
) -> tuple[float, float]:
    """Pick where a later component starts, away from placed content."""
    bounds = placer.grid.bounds()
    if bounds is None:
        return start
    opts = placer.options
    min_x, min_y, max_x, max_y = bounds
    width, height = _estimate_extent(component, main_path, placer)
    gap = opts.component_gap
    limit_x = start[0] + opts.max_width
    limit_y = start[1] + opts.max_height

    def fits(x: float, y: float) -> bool:
        return x + width <= limit_x and y + height <= limit_y and placer.grid.is_free(x, y, width, height)

    candidates = [
        (max_x + gap, min_y),  # right
        (min_x, max_y + gap),  # below
        (min_x, min_y - gap - height),  # above
        (min_x - gap - width, min_y),  # left
    ]
    for x, y in candidates:
        if fits(x, y):
            return x, y

    y = start[1]
    while y + height <= limit_y:
        x = start[0]
        while x + width <= limit_x:
            if fits(x, y):
                return x, y
            x += opts.horizontal_spacing
        y += opts.vertical_spacing

    return max_x + gap, start[1]


def _layout_component(
    component: list[str],
    edges: list[Edge],
    main_path: list[str],
    placer: _Placer,
    origin: tuple[float, float],
) -> None:
    opts = placer.options
    ox, oy = origin
    for i, nid in enumerate(main_path):
        placer.place_near(nid, ox + i * opts.horizontal_spacing, oy)

    members = set(component)
    neighbours: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        if edge.source in members and edge.target in members:
            neighbours[edge.source].append(edge.target)
    for edge in edges:
        if edge.source in members and edge.target in members:
            neighbours[edge.target].append(edge.source)

    hs, vs = opts.horizontal_spacing, opts.vertical_spacing
    offsets = [
        (0, -vs),  # above
        (0, vs),  # below
        (-hs, 0),  # left
        (hs, 0),  # right
        (hs, -vs),
        (hs, vs),
        (-hs, -vs),
        (-hs, vs),
    ]

    queue = deque(main_path)
    while queue:
        anchor = queue.popleft()
        ax, ay = placer.positions[anchor].x, placer.positions[anchor].y
        for nid in neighbours.get(anchor, []):
            if nid in placer.positions:
                continue
            if not any(placer.try_place(nid, ax + dx, ay + dy) for dx, dy in offsets):
                placer.place_near(nid, ax + hs, ay + vs)
            queue.append(nid)

    # Anything the walk above missed (only possible with malformed input).
    for nid in component:
        if nid not in placer.positions:
            placer.place_near(nid, ox, oy)


def compute_layout(
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    options: LayoutOptions | None = None,
    existing: Mapping[str, Position] | None = None,
) -> dict[str, Position]:
    """Compute overlap-free positions for every node.

    Args:
        nodes: All nodes to lay out.
        edges: All edges (edges to unknown nodes are ignored).
        options: Sizes and spacing; defaults to ``LayoutOptions()``.
        existing: Current positions; the layout starts at their top-left
            corner so organizing does not jump the whole flow away.

    Returns:
        ``node id -> Position`` for every node.
    """
    opts = options or LayoutOptions()
    node_map = {n.id: n for n in nodes}
    edge_list = [e for e in edges if e.source in node_map and e.target in node_map]

    if existing:
        start = (min(p.x for p in existing.values()), min(p.y for p in existing.values()))
    else:
        start = (opts.start_x, opts.start_y)

    connected = {e.source for e in edge_list} | {e.target for e in edge_list}
    components = [c for c in weakly_connected_components(node_map, edge_list) if connected.intersection(c)]
    isolated = sorted((nid for nid in node_map if nid not in connected), key=natural_sort_key)

    placer = _Placer(node_map, opts)
    for component in components:
        main_path = find_main_path(component, edge_list)
        origin = _component_origin(component, main_path, placer, start)
        _layout_component(component, edge_list, main_path, placer, origin)

    if isolated:
        bounds = placer.grid.bounds()
        y = bounds[3] + opts.component_gap if bounds else start[1]
        x = start[0]
        for nid in isolated:
            w, _ = placer.size(nid)
            placer.place_near(nid, x, y)
            x += w + opts.gap + opts.cell_size

    log.debug(
        "layout_computed",
        nodes=len(node_map),
        components=len(components),
        isolated=len(isolated),
    )
    return placer.positions
