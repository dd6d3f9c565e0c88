"""权限树构建。

一次查询全部未删除权限、一次查询角色使用数，在内存中按 parent_id 分组后
从根节点迭代展开。父节点缺失的行视为根；只能经由环到达的行会被提升为根并记录告警，
因此展开后的树恰好包含每个未删除权限一次。
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nadmin_api.models.permission import Permission, RolePermission

logger = logging.getLogger("nadmin_api.permissions")


@dataclass
class PermissionTreeNode:
    """权限树节点。"""

    permission: Permission
    role_usage_count: int = 0
    children: list["PermissionTreeNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        item = self.permission
        return {
            "id": str(item.id),
            "code": item.code,
            "name": item.name,
            "type": item.type,
            "parentId": str(item.parent_id) if item.parent_id else None,
            "sortOrder": item.sort_order,
            "isSystem": item.is_system,
            "frontPath": item.front_path,
            "apiPath": item.api_path,
            "method": item.method,
            "resourceType": item.resource_type,
            "description": item.description,
            "status": item.status,
            "roleUsageCount": self.role_usage_count,
            "children": [child.to_dict() for child in self.children],
        }


def _sort_key(node: PermissionTreeNode) -> tuple[int, str]:
    return node.permission.sort_order or 0, node.permission.name or ""


def flatten_tree(roots: Iterable[PermissionTreeNode]) -> list[PermissionTreeNode]:
    """按先序遍历展开权限树。"""
    flattened: list[PermissionTreeNode] = []
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        flattened.append(node)
        stack.extend(reversed(node.children))
    return flattened


def assemble_permission_forest(
    rows: Iterable[Permission],
    usage_counts: Mapping[UUID, int] | None = None,
    parent_id: UUID | None = None,
) -> list[PermissionTreeNode]:
    """在内存中组装权限森林。

    `parent_id` 为空时返回完整森林，否则返回该节点的子树列表（即其子节点）。
    """
    usage_counts = usage_counts or {}
    nodes: dict[UUID, PermissionTreeNode] = {}
    for row in rows:
        nodes[row.id] = PermissionTreeNode(permission=row, role_usage_count=int(usage_counts.get(row.id, 0)))

    children_index: dict[UUID | None, list[PermissionTreeNode]] = defaultdict(list)
    for node in nodes.values():
        parent = node.permission.parent_id
        # 父节点不存在或已删除时视为根。
        if parent is not None and (parent not in nodes or parent == node.permission.id):
            parent = None
        children_index[parent].append(node)
    for siblings in children_index.values():
        siblings.sort(key=_sort_key)

    visited: set[UUID] = set()

    def _expand(roots: list[PermissionTreeNode]) -> None:
        stack = list(roots)
        while stack:
            node = stack.pop()
            node_id = node.permission.id
            if node_id in visited:
                continue
            visited.add(node_id)
            node.children = [child for child in children_index.get(node_id, []) if child.permission.id not in visited]
            stack.extend(node.children)

    roots = list(children_index.get(None, []))
    _expand(roots)

    # 剩余未访问节点只可能处于环上。
    stranded = sorted((node for node_id, node in nodes.items() if node_id not in visited), key=_sort_key)
    for node in stranded:
        if node.permission.id in visited:
            continue
        logger.warning(
            "permission cycle detected, promoting to root permission_id=%s code=%s",
            node.permission.id,
            node.permission.code,
        )
        roots.append(node)
        _expand([node])

    if parent_id is None:
        return roots
    target = nodes.get(parent_id)
    return list(target.children) if target is not None else []


def load_role_usage_counts(db: Session) -> dict[UUID, int]:
    """统计每个权限被多少个不同角色引用。"""
    rows = db.execute(
        select(RolePermission.permission_id, func.count(func.distinct(RolePermission.role_id)))
        .group_by(RolePermission.permission_id)
    ).all()
    return {permission_id: int(count) for permission_id, count in rows}


def build_permission_tree(db: Session, parent_id: UUID | None = None) -> list[PermissionTreeNode]:
    """查询并构建权限树，共两次查询。"""
    rows = db.execute(select(Permission).where(Permission.is_deleted.is_(False))).scalars().all()
    return assemble_permission_forest(rows, load_role_usage_counts(db), parent_id=parent_id)
