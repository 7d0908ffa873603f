"""
Checklist Store — read and author per-module checklist trees.

The tree is loaded in one query per module and assembled in memory; callers
(progress, submit completeness, the checklist endpoint) always see the
hierarchy as it is at read time.
"""

import logging
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from railinspect.core.exceptions import NotFoundError, ValidationError
from railinspect.models import MODULE_TYPES, db
from railinspect.models.checklist import NODE_TYPES, PARENT_RULES, ChecklistNode, Reason

logger = logging.getLogger(__name__)


class ChecklistTree:
    """In-memory view over one module's nodes, indexed by parent."""

    def __init__(self, module_type: str, nodes):
        self.module_type = module_type
        self.nodes = {n.id: n for n in nodes}
        self.children = defaultdict(list)
        for node in nodes:
            self.children[node.parent_id].append(node)
        for siblings in self.children.values():
            siblings.sort(key=lambda n: (n.display_order, n.id))

    def roots(self):
        return self.children[None]

    def get(self, node_id):
        return self.nodes.get(node_id)

    def applicable_questions(self, profile, root=None) -> list[int]:
        """Ids of active questions under *root* (or the whole tree) that apply to *profile*.

        A node that does not apply prunes its whole subtree.
        """
        start = [root] if root is not None else self.roots()
        found = []
        stack = list(reversed(start))
        while stack:
            node = stack.pop()
            if not node.applies_to(profile):
                continue
            if node.node_type == "question":
                found.append(node.id)
                continue
            stack.extend(reversed(self.children[node.id]))
        return found

    def subcategories(self):
        return [n for n in self.nodes.values() if n.node_type == "subcategory"]


def _check_module(module_type: str):
    if module_type not in MODULE_TYPES:
        raise ValidationError(
            f"Unknown module '{module_type}'",
            details={"module_type": module_type, "allowed": list(MODULE_TYPES)},
        )


def load_tree(module_type: str) -> ChecklistTree:
    """Load every node of *module_type* (active or not) in one query."""
    _check_module(module_type)
    nodes = db.session.execute(
        select(ChecklistNode).where(ChecklistNode.module_type == module_type)
    ).scalars().all()
    return ChecklistTree(module_type, nodes)


def get_subcategory(tree: ChecklistTree, subcategory_id: int) -> ChecklistNode:
    """Return the subcategory node, or raise NotFoundError if it is not one of this tree's."""
    node = tree.get(subcategory_id)
    if node is None or node.node_type != "subcategory":
        raise NotFoundError(resource="Subcategory", resource_id=subcategory_id)
    return node


def _serialize(tree: ChecklistTree, node: ChecklistNode) -> dict:
    d = node.to_dict(include_reasons=True)
    if node.node_type != "question":
        d["children"] = [
            _serialize(tree, child)
            for child in tree.children[node.id]
            if child.is_active
        ]
    return d


def get_checklist(module_type: str, subcategory_id: int | None = None) -> list[dict]:
    """Return the ordered nested checklist for a module, optionally one subcategory only."""
    tree = load_tree(module_type)
    if subcategory_id is not None:
        return [_serialize(tree, get_subcategory(tree, subcategory_id))]
    return [_serialize(tree, root) for root in tree.roots() if root.is_active]


def add_node(module_type: str, node_type: str, name: str, *, parent_id: int | None = None,
             display_order: int | None = None, requires_compartment: bool = False,
             requires_amenity: str | None = None) -> ChecklistNode:
    """
    Author a checklist node.

    Enforces the category → subcategory → item → question parent rules and
    keeps ``display_order`` unique among siblings (appends when omitted).
    """
    _check_module(module_type)
    if node_type not in NODE_TYPES:
        raise ValidationError(
            f"Unknown node type '{node_type}'",
            details={"node_type": node_type, "allowed": list(NODE_TYPES)},
        )
    if not name or not str(name).strip():
        raise ValidationError("name is required", details={"field": "name"})

    expected_parent = PARENT_RULES[node_type]
    if expected_parent is None:
        if parent_id is not None:
            raise ValidationError(f"A {node_type} must be a root node")
    else:
        parent = db.session.get(ChecklistNode, parent_id) if parent_id is not None else None
        if parent is None or parent.module_type != module_type:
            raise NotFoundError(resource="ChecklistNode", resource_id=parent_id)
        if parent.node_type != expected_parent:
            raise ValidationError(
                f"A {node_type} must sit under a {expected_parent}, not a {parent.node_type}",
                details={"parent_id": parent_id, "parent_type": parent.node_type},
            )

    sibling_filter = [
        ChecklistNode.module_type == module_type,
        ChecklistNode.parent_id.is_(None) if parent_id is None else ChecklistNode.parent_id == parent_id,
    ]
    if display_order is None:
        current_max = db.session.execute(
            select(func.max(ChecklistNode.display_order)).where(*sibling_filter)
        ).scalar()
        display_order = (current_max or 0) + 1
    else:
        clash = db.session.execute(
            select(ChecklistNode.id).where(*sibling_filter, ChecklistNode.display_order == display_order)
        ).first()
        if clash:
            raise ValidationError(
                f"display_order {display_order} already used among siblings",
                details={"parent_id": parent_id, "display_order": display_order},
            )

    node = ChecklistNode(
        module_type=module_type,
        node_type=node_type,
        parent_id=parent_id,
        name=str(name).strip(),
        display_order=display_order,
        requires_compartment=bool(requires_compartment),
        requires_amenity=requires_amenity.upper() if requires_amenity else None,
    )
    db.session.add(node)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(
            f"display_order {display_order} already used among siblings",
            details={"parent_id": parent_id, "display_order": display_order},
        )
    logger.info("Checklist node %s added to %s (%s)", node.id, module_type, node_type)
    return node


def add_reason(question_id: int, text: str) -> Reason:
    question = db.session.get(ChecklistNode, question_id)
    if question is None or question.node_type != "question":
        raise NotFoundError(resource="Question", resource_id=question_id)
    reason = Reason(question_id=question_id, text=text.strip())
    db.session.add(reason)
    db.session.commit()
    return reason
