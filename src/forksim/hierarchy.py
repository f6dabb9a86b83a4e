"""Parent/child hierarchy derived from process records."""

import logging
from collections.abc import Iterable

from rich.tree import Tree

from forksim.models import ProcessRecord, ProcessStatus, TreeNode

logger = logging.getLogger(__name__)


def build_tree(records: Iterable[ProcessRecord]) -> TreeNode | None:
    """
    Build a rooted tree from PPID links.

    The node with ``ppid == 0`` is the root. Records whose parent cannot be
    found are reported and left out; if no record has ``ppid == 0``, a lone
    orphan (or the lowest-PID one) is used as the root instead. Sibling order
    follows insertion order and carries no meaning.

    A PPID cycle is cut above its lowest PID. Returns None only when there
    are no records.
    """
    nodes: dict[int, TreeNode] = {}
    for record in records:
        nodes[record.pid] = TreeNode(pid=record.pid, ppid=record.ppid, status=record.status)

    if not nodes:
        return None

    root: TreeNode | None = None
    orphans: list[TreeNode] = []
    for node in nodes.values():
        if node.ppid == 0 and root is None:
            root = node
            continue
        parent = nodes.get(node.ppid)
        if parent is not None:
            parent.children.append(node)
        else:
            orphans.append(node)

    if root is None and orphans:
        orphans.sort(key=lambda node: node.pid)
        root = orphans.pop(0)
        logger.warning("No root process found; using PID %d as root", root.pid)

    for orphan in orphans:
        logger.warning("Parent PID %d not found for PID %d", orphan.ppid, orphan.pid)

    if root is None:
        # Every record has a parent, so the PPID links loop.
        root = nodes[min(nodes)]
        parent = nodes[root.ppid]
        parent.children = [child for child in parent.children if child is not root]
        logger.warning("Process links form a cycle; using PID %d as root", root.pid)
    return root


def tree_pids(root: TreeNode | None) -> list[int]:
    """Flatten a tree back into the PIDs it contains."""
    if root is None:
        return []
    return [node.pid for node in root.walk()]


def render_tree(root: TreeNode | None) -> Tree:
    """Build a rich tree for printing the hierarchy to a console."""
    if root is None:
        return Tree("[dim](no processes)[/dim]")

    def label(node: TreeNode) -> str:
        if node.status is ProcessStatus.FINISHED:
            return f"[dim]{node.name} (finished)[/dim]"
        return f"[green]{node.name}[/green]"

    tree = Tree(label(root))
    pending = [(root, tree)]
    while pending:
        node, branch = pending.pop()
        for child in node.children:
            pending.append((child, branch.add(label(child))))
    return tree
