# flames/model_props.py
from typing import Any, Dict, Tuple


def is_openai_model(model_name) -> bool:
    # keep it simple; adjust if you start using exotic names
    prefixes = ("gpt-", "gpt4", "o1", "o3", "o4", "text-embedding-3", "text-embedding-ada")
    return any((model_name or "").startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-5.1'
        - 'gpt-5.1_low'
        - 'gpt-5.1_high_flex'
    into (base_model, openai_params).

    Suffix tokens are reasoning efforts or service tiers.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    params: Dict[str, Any] = {}

    reasoning_tokens = {"none", "minimal", "low", "medium", "high", "xhigh"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    for token in parts[1:]:
        token = token.lower()
        if token in reasoning_tokens and "reasoning" not in params:
            params["reasoning"] = {"effort": token}
        elif token in service_tier_tokens:
            params["service_tier"] = token
        else:
            raise ValueError(f"parse_model_name: unknown model suffix '{token}' in '{raw}'")
    return base, params
