# flames/base_utils.py

import json
import logging
import re

import commentjson

from flames.errors import ContractViolationError

logger = logging.getLogger("flames_backend")

_WHOLE_FENCE_RE = re.compile(r"^\s*```[\w+-]*[ \t]*\n(.*?)\n?\s*```\s*$", re.DOTALL)
_JSON_FENCE_RE = re.compile(r"```json\s*\n(.*?)\n```", re.DOTALL)
_ANY_FENCE_RE = re.compile(r"```\s*\n(.*?)\n```", re.DOTALL)


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def strip_code_fence(self, text: str) -> str:
        """
        Unwrap a structured answer the provider put inside a ``` fence.
        Only the fence is removed; fences appearing inside the payload
        (e.g. a README in a file's content) are left alone.
        """
        m = _WHOLE_FENCE_RE.match(text)
        if m:
            return m.group(1).strip()
        m = _JSON_FENCE_RE.search(text) or _ANY_FENCE_RE.search(text)
        if m:
            return m.group(1).strip()
        return text.strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        It works differently from the standard "format" method: instead of looking for all the potential keys,
        it looks only for the keys passed in kwargs, so literal braces (JSON examples, code) survive.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result

    def load_json_response(self, raw: str):
        """
        Parse a structured provider answer. Fences are stripped first; plain
        JSON is tried before the comment-tolerant parser.

        Raises ContractViolationError if the text still isn't JSON.
        """
        if raw is None or not str(raw).strip():
            raise ContractViolationError("AI returned an empty or invalid response.")

        payload = self.strip_code_fence(str(raw))
        try:
            return json.loads(payload)
        except ValueError:
            pass
        try:
            return commentjson.loads(payload)
        except Exception as e:
            logger.error(f"Failed to parse AI response as JSON (first 500 chars): {payload[:500]}")
            raise ContractViolationError(f"Failed to parse AI response as JSON: {e}") from e
