# flames/modifications.py
"""
File-level edits produced by the generation provider and the code that
applies them to a job's working directory.

Application is two-pass: every modification in a batch is resolved and
checked before the first byte is written, so a batch with one bad entry
(escaping path, REPLACE of a missing file, file/folder clash) changes
nothing. An OS error in the write pass can still leave earlier writes of the
same batch in place.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ValidationError

from flames.errors import ContractViolationError, PathEscapeError

logger = logging.getLogger("flames_backend")

REPLACE_CONTENT = "REPLACE_CONTENT"
CREATE_FILE = "CREATE_FILE"


class FileAction(BaseModel):
    type: Literal["REPLACE_CONTENT", "CREATE_FILE"]
    newContent: Optional[str] = None
    content: Optional[str] = None


class FileModification(BaseModel):
    filePath: str
    action: FileAction


class ModificationPlan(BaseModel):
    modifications: List[FileModification]


@dataclass(frozen=True)
class Modification:
    target_path: str
    action: str
    content: str

    @property
    def is_replace(self) -> bool:
        return self.action == REPLACE_CONTENT

    def to_wire(self) -> Dict[str, Any]:
        key = "newContent" if self.is_replace else "content"
        return {"filePath": self.target_path, "action": {"type": self.action, key: self.content}}

    @classmethod
    def replace(cls, target_path: str, content: str) -> "Modification":
        return cls(target_path, REPLACE_CONTENT, content)

    @classmethod
    def create(cls, target_path: str, content: str) -> "Modification":
        return cls(target_path, CREATE_FILE, content)


def parse_modifications(data: Any) -> List[Modification]:
    """
    Validate a parsed provider answer of the form {"modifications": [...]}.
    Raises ContractViolationError on any shape mismatch.
    """
    try:
        plan = ModificationPlan.model_validate(data)
    except ValidationError as e:
        raise ContractViolationError(f"AI response does not match the modifications format: {e}") from e

    out: List[Modification] = []
    for item in plan.modifications:
        action = item.action
        # providers mix up the two content keys; take whichever is present
        if action.type == REPLACE_CONTENT:
            content = action.newContent if action.newContent is not None else action.content
        else:
            content = action.content if action.content is not None else action.newContent
        if content is None:
            raise ContractViolationError(f"Modification for '{item.filePath}' carries no content")
        out.append(Modification(item.filePath, action.type, content))
    return out


def modifications_to_wire(modifications: List[Modification]) -> List[Dict[str, Any]]:
    return [m.to_wire() for m in modifications]


class ModificationApplicator:

    def resolve_target(self, work_dir: Path, target_path: str) -> Path:
        """
        Canonicalise `target_path` against `work_dir` and refuse anything that
        does not land strictly inside it (absolute paths, '..', symlinks out).
        """
        if not target_path or not str(target_path).strip():
            raise PathEscapeError("Modification has an empty file path")
        raw = Path(str(target_path).replace("\\", "/"))
        if raw.is_absolute() or raw.drive:
            raise PathEscapeError(f"Absolute path not allowed: {target_path}")

        root = Path(work_dir).resolve()
        resolved = (root / raw).resolve()
        if resolved == root or not resolved.is_relative_to(root):
            raise PathEscapeError(f"Path escapes the working directory: {target_path}")
        return resolved

    def validate(self, work_dir: Path, modifications: List[Modification]) -> List[Tuple[Modification, Path]]:
        planned_files = set()
        planned_dirs = set()
        root = Path(work_dir).resolve()
        resolved: List[Tuple[Modification, Path]] = []

        for mod in modifications:
            path = self.resolve_target(work_dir, mod.target_path)

            if path.is_dir() or path in planned_dirs:
                raise ContractViolationError(f"'{mod.target_path}' is a folder, not a file")

            if mod.is_replace:
                if not (path.is_file() or path in planned_files):
                    raise ContractViolationError(f"Cannot replace '{mod.target_path}': file does not exist")
            else:
                for parent in path.parents:
                    if parent == root:
                        break
                    if parent.is_file() or parent in planned_files:
                        raise ContractViolationError(
                            f"Cannot create '{mod.target_path}': '{parent.relative_to(root)}' is a file"
                        )
                    planned_dirs.add(parent)

            planned_files.add(path)
            resolved.append((mod, path))
        return resolved

    def apply(self, work_dir: Path, modifications: List[Modification]) -> List[Modification]:
        """
        Apply `modifications` in order. Nothing is written unless the whole
        batch validates.
        """
        resolved = self.validate(work_dir, modifications)

        for mod, path in resolved:
            if not mod.is_replace:
                path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(mod.content)
            logger.debug(f"[Apply] {mod.action} {mod.target_path} ({len(mod.content)} chars)")

        logger.info(f"[Apply] Applied {len(resolved)} modifications in {work_dir}")
        return [mod for mod, _ in resolved]
