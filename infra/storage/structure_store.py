"""
稿件结构存储 (Structure Store)
负责 manuscript.json 的持久化和加载，加载时使用 NetworkX 校验树结构。
"""
import json
import logging
import os

import networkx as nx

from core.exceptions import CorruptProjectError, ProjectNotFoundError
from core.project_manager import MANUSCRIPT_FILENAME
from core.schemas import ManuscriptStructure

logger = logging.getLogger(__name__)

def get_structure_path(project_root: str) -> str:
    """获取指定项目的稿件结构文件路径"""
    return os.path.join(project_root, MANUSCRIPT_FILENAME)

def build_graph(structure: ManuscriptStructure) -> nx.DiGraph:
    """
    将稿件结构转换为父 → 子的有向图。
    """
    G = nx.DiGraph()
    for node_id, node in structure.nodes.items():
        G.add_node(node_id, kind=node.kind, title=node.title)
    for node_id, node in structure.nodes.items():
        for position, child_id in enumerate(node.children):
            G.add_edge(node_id, child_id, position=position)
    return G

def validate_structure(structure: ManuscriptStructure):
    """
    校验结构不变量，违反时抛出 CorruptProjectError:
    - 根节点存在；children 引用的节点都存在且在同一父节点中不重复
    - 没有节点有两个父节点，整体无环
    - order 与节点表成员集合一致
    """
    nodes = structure.nodes
    if structure.root not in nodes:
        raise CorruptProjectError(f"根节点不存在: {structure.root}")

    for node_id, node in nodes.items():
        missing = [c for c in node.children if c not in nodes]
        if missing:
            raise CorruptProjectError(f"节点 {node_id} 引用了不存在的子节点: {missing}")
        if len(set(node.children)) != len(node.children):
            raise CorruptProjectError(f"节点 {node_id} 的子节点列表存在重复")

    G = build_graph(structure)
    multi_parent = [n for n, degree in G.in_degree() if degree > 1]
    if multi_parent:
        raise CorruptProjectError(f"以下节点有多个父节点: {multi_parent}")
    if G.in_degree(structure.root) != 0:
        raise CorruptProjectError("根节点不能是其他节点的子节点")
    if not nx.is_directed_acyclic_graph(G):
        raise CorruptProjectError("稿件结构中存在环")

    if set(structure.order) != set(nodes) or len(structure.order) != len(set(structure.order)):
        raise CorruptProjectError("order 与节点表不一致")

def load_structure(project_root: str) -> ManuscriptStructure:
    """
    加载项目的稿件结构。
    """
    path = get_structure_path(project_root)
    if not os.path.exists(path):
        raise ProjectNotFoundError(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            structure = ManuscriptStructure.from_dict(json.load(f))
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"解析稿件结构失败 {path}: {e}", exc_info=True)
        raise CorruptProjectError(f"无法解析 {path}: {e}") from e

    # 旧项目的 order 可能不含根节点
    if structure.root not in structure.order:
        structure.order.insert(0, structure.root)
    validate_structure(structure)
    return structure

def save_structure(project_root: str, structure: ManuscriptStructure):
    """
    保存稿件结构到 JSON 文件 (先写临时文件再替换)。
    """
    path = get_structure_path(project_root)
    tmp_path = path + ".tmp"
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(structure.to_dict(), f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)
    logger.debug(f"稿件结构已保存: {path} (节点数: {len(structure.nodes)})")
