"""LLM output parsing utilities.

Extracts JSON from free-form model responses and validates items against
pydantic schemas, skipping items that do not validate.
"""

import json
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from compendium.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def _matches(result: object, expect_array: bool) -> bool:
    return isinstance(result, list) if expect_array else isinstance(result, dict)


def extract_json(text: str, expect_array: bool = False) -> dict | list | None:
    """Extract JSON from LLM response text.

    Handles common LLM output patterns:
    1. Direct JSON (try first)
    2. Markdown code blocks (```json ... ```)
    3. Raw JSON with surrounding text (greedy match)

    Args:
        text: LLM response text
        expect_array: If True, expect JSON array; if False, expect object

    Returns:
        Parsed JSON dict/list, or None if extraction fails

    Examples:
        >>> extract_json('{"key": "value"}')
        {'key': 'value'}
        >>> extract_json('```json\\n[{"a": 1}]\\n```', expect_array=True)
        [{'a': 1}]
    """
    if not text:
        return None

    text = text.strip()

    candidates = [text]

    match = re.search(r"```(?:json)?\s*([\[\{].*?[\]\}])\s*```", text, re.DOTALL)
    if match:
        candidates.append(match.group(1))

    match = re.search(r"\[.*\]" if expect_array else r"\{.*\}", text, re.DOTALL)
    if match:
        candidates.append(match.group())

    for candidate in candidates:
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if _matches(result, expect_array):
            return result

    return None


def validate_list_with_schema(
    data: list | None,
    item_schema: type[T],
) -> list[T]:
    """Validate a list of items against a Pydantic schema.

    Invalid items are skipped with a warning.

    Args:
        data: List of parsed JSON items
        item_schema: Pydantic model class for each item

    Returns:
        List of validated items (invalid items omitted)
    """
    if not data:
        return []

    results: list[T] = []
    for i, item in enumerate(data):
        try:
            results.append(item_schema.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Item validation failed",
                index=i,
                schema=item_schema.__name__,
                errors=str(e),
            )

    return results
