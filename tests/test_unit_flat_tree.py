from dataclasses import dataclass, field

import pytest

from lots_ingest.utils.flat_tree import FlatTree


@dataclass
class Node:
    name: str
    children: list["Node"] = field(default_factory=list)


def _tree():
    target = Node("target")
    section = Node("section", [target])
    header = Node("header")
    root = Node("root", [Node("a", [Node("a1")]), header, section])
    return root, header, section, target


def test_pre_order_flattening():
    root, *_ = _tree()
    tree = FlatTree(root, lambda n: n.children)
    assert [n.name for n in tree] == ["root", "a", "a1", "header", "section", "target"]
    assert tree.index_of(root) == 0
    assert len(FlatTree(root, lambda n: n.children, include_root=False)) == 5


def test_nearest_preceding_skips_ancestors():
    root, header, section, target = _tree()
    tree = FlatTree(root, lambda n: n.children)
    assert tree.nearest_preceding(target, lambda n: n.name.startswith("h")) is header
    assert tree.nearest_preceding(target, lambda n: n.name == "section") is None
    assert tree.nearest_preceding(target, lambda n: n.name == "section", skip_ancestors=False) is section
    assert tree.nearest_preceding(target, lambda n: n.name == "target", include_self=True) is target
    assert tree.ancestors(target) == [section, root]
    assert tree.nearest_ancestor(target, lambda n: n.name == "root") is root


def test_identity_not_equality():
    # value-equal nodes at different positions stay distinct
    first, second = Node("x"), Node("x")
    root = Node("root", [first, Node("mark"), second])
    tree = FlatTree(root, lambda n: n.children)
    assert first == second
    assert tree.index_of(first) == 1
    assert tree.index_of(second) == 3
    assert tree.nearest_preceding(second, lambda n: n.name == "mark").name == "mark"
    assert tree.nearest_preceding(first, lambda n: n.name == "mark") is None


def test_unknown_node_raises():
    root, *_ = _tree()
    tree = FlatTree(root, lambda n: n.children)
    with pytest.raises(KeyError):
        tree.index_of(Node("stranger"))
