# flames/generation_client.py

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from langchain_core.messages import BaseMessage, HumanMessage

from flames.base_utils import BaseUtils
from flames.errors import ContractViolationError, ExternalConfigError
from flames.llm_client import GENERATION_RETRIES, INITIAL_BACKOFF_SECONDS, call_with_backoff_sync
from flames.modifications import Modification, parse_modifications
from flames import prompts

logger = logging.getLogger("flames_backend")


class GenerationClient(BaseUtils):
    """
    Structured calls to the generation provider. `llm` is anything with
    generate(messages, want_structured) -> str (ChatLlmClient in production).

    Only generate_modifications() retries (overload only); the smaller calls
    used by indexing and chat edits are single attempts.
    """

    def __init__(
        self,
        llm,
        *,
        retries: int = GENERATION_RETRIES,
        initial_delay: float = INITIAL_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.llm = llm
        self.retries = retries
        self.initial_delay = initial_delay
        self.sleep = sleep

    def _require_llm(self):
        if self.llm is None:
            raise ExternalConfigError("Generation provider is not configured.")
        return self.llm

    def _structured(self, messages: List[BaseMessage] | str) -> Any:
        raw = self._require_llm().generate(messages, want_structured=True)
        return self.load_json_response(raw)

    def generate_modifications(
        self,
        messages: List[BaseMessage],
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
    ) -> List[Modification]:
        """
        Ask for a modification batch. Overloads are retried with exponential
        backoff; a malformed answer is a ContractViolationError and is not.
        """
        llm = self._require_llm()
        raw = call_with_backoff_sync(
            lambda: llm.generate(messages, want_structured=True),
            retries=self.retries,
            initial_delay=self.initial_delay,
            sleep=self.sleep,
            on_retry=on_retry,
        )
        return parse_modifications(self.load_json_response(raw))

    def describe_tree(self, file_tree: Dict[str, Any]) -> Dict[str, Any]:
        prompt = self.unsafe_string_format(
            prompts.DESCRIBE_TREE_PROMPT,
            file_tree_json=json.dumps(file_tree, indent=2),
        )
        described = self._structured([HumanMessage(content=prompt)])
        if not isinstance(described, dict):
            raise ContractViolationError("AI returned an invalid project index.")
        return described

    def select_file(self, user_message: str, project_index: Dict[str, Any]) -> str:
        prompt = self.unsafe_string_format(
            prompts.SELECT_FILE_PROMPT,
            user_message=user_message,
            project_index_json=json.dumps(project_index, indent=2),
        )
        data = self._structured([HumanMessage(content=prompt)])
        file_path = data.get("filePath") if isinstance(data, dict) else None
        if not isinstance(file_path, str) or not file_path.strip():
            raise ContractViolationError("AI failed to identify a file to modify.")
        return file_path.strip()

    def replace_file(
        self,
        user_message: str,
        file_path: str,
        file_content: str,
        related_files: Sequence[Tuple[str, str]] = (),
    ) -> Modification:
        """
        Ask for the full new content of `file_path`. The answer must be exactly
        one REPLACE_CONTENT for that same path.
        """
        related = "\n\n".join(f"--- FILE: {p} ---\n{c}" for p, c in related_files) or "(none)"
        prompt = self.unsafe_string_format(
            prompts.REPLACE_FILE_PROMPT,
            user_message=user_message,
            file_path=file_path,
            file_content=file_content,
            related_files=related,
        )
        mods = parse_modifications(self._structured([HumanMessage(content=prompt)]))
        if len(mods) != 1 or not mods[0].is_replace or mods[0].target_path != file_path:
            raise ContractViolationError(
                f"AI must return a single REPLACE_CONTENT for '{file_path}', got "
                f"{[(m.action, m.target_path) for m in mods]}"
            )
        return mods[0]

    def describe_file(self, file_path: str, file_content: str) -> str:
        prompt = self.unsafe_string_format(
            prompts.DESCRIBE_FILE_PROMPT,
            file_path=file_path,
            file_content=file_content,
        )
        data = self._structured([HumanMessage(content=prompt)])
        description = data.get("description") if isinstance(data, dict) else None
        if not isinstance(description, str):
            raise ContractViolationError("AI returned no description for the modified file.")
        return description
