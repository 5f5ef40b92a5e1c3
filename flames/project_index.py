# flames/project_index.py

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict

from flames.workspaces import IGNORED_NAMES, WorkArea

logger = logging.getLogger("flames_backend")

FILE = "file"
FOLDER = "folder"


def build_file_tree(directory: Path) -> Dict[str, Any]:
    """
    {"src": {"type": "folder", "children": {"App.jsx": {"type": "file"}}},
     "package.json": {"type": "file"}}

    node_modules and dot-entries are left out.
    """
    tree: Dict[str, Any] = {}
    for entry in sorted(Path(directory).iterdir(), key=lambda p: p.name):
        if entry.name in IGNORED_NAMES or entry.name.startswith("."):
            continue
        if entry.is_dir():
            tree[entry.name] = {"type": FOLDER, "children": build_file_tree(entry)}
        else:
            tree[entry.name] = {"type": FILE}
    return tree


def merge_descriptions(tree: Dict[str, Any], described: Any) -> Dict[str, Any]:
    """
    Copy `description` fields from the provider's answer onto our own tree.
    The result always has exactly the shape of `tree`; anything the provider
    invented is dropped and anything it skipped gets an empty description.
    """
    out: Dict[str, Any] = {}
    described = described if isinstance(described, dict) else {}
    for name, node in tree.items():
        other = described.get(name) if isinstance(described.get(name), dict) else {}
        new_node = {"type": node["type"], "description": str(other.get("description") or "")}
        if node["type"] == FOLDER:
            new_node["children"] = merge_descriptions(node.get("children", {}), other.get("children"))
        out[name] = new_node
    return out


def set_description(tree: Dict[str, Any], file_path: str, description: str) -> Dict[str, Any]:
    """
    Walk `file_path` segment by segment through `children` and set the leaf's
    description in place. Missing nodes along the way are created.
    """
    parts = [p for p in file_path.replace("\\", "/").split("/") if p]
    if not parts:
        raise ValueError("Empty file path")

    node_map = tree
    for part in parts[:-1]:
        folder = node_map.get(part)
        if not isinstance(folder, dict):
            folder = {"type": FOLDER, "description": "", "children": {}}
            node_map[part] = folder
        folder.setdefault("children", {})
        node_map = folder["children"]

    leaf = node_map.get(parts[-1])
    if not isinstance(leaf, dict):
        leaf = {"type": FILE}
        node_map[parts[-1]] = leaf
    leaf["description"] = description
    return tree


class ProjectIndexStore:
    """Reads and writes the Project Index Tree of a job (.flames/index.json)."""

    def __init__(self, work_area: WorkArea):
        self.work_area = work_area

    def load(self, job_id: str) -> Dict[str, Any]:
        with open(self.work_area.index_tree_path(job_id), "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, job_id: str, tree: Dict[str, Any]) -> None:
        path = self.work_area.index_tree_path(job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(tree, f, indent=2)

    def load_or_build(self, job_id: str) -> Dict[str, Any]:
        try:
            return self.load(job_id)
        except (FileNotFoundError, ValueError):
            logger.warning(f"[Index] job={job_id} No index.json yet, falling back to the bare file tree")
            return merge_descriptions(build_file_tree(self.work_area.work_dir(job_id)), {})

    def regenerate(self, job_id: str, generation_client) -> Dict[str, Any]:
        tree = build_file_tree(self.work_area.work_dir(job_id))
        described = generation_client.describe_tree(tree)
        full = merge_descriptions(tree, described)
        self.save(job_id, full)
        logger.info(f"[Index] job={job_id} .flames/index.json created successfully.")
        return full

    def update_description(self, job_id: str, file_path: str, description: str) -> Dict[str, Any]:
        tree = copy.deepcopy(self.load_or_build(job_id))
        set_description(tree, file_path, description)
        self.save(job_id, tree)
        return tree
