"""Prompt text and response schema shared by every analysis provider."""
import json
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from taskscope.models import TASK_CATEGORIES, TaskAnalysis
from taskscope.services.analyzers.base import ChangedMonitor, UnchangedMonitor
from taskscope.services.errors import EmptyResponseError, ResponseParseError

logger = logging.getLogger(__name__)

JSON_EXAMPLE = (
    '{"task_title": "short title", "task_description": "what they\'re doing", '
    '"category": "' + "|".join(TASK_CATEGORIES) + '", '
    '"reasoning": "why you think this", "is_new_task": true/false'
)

JSON_ONLY = "Respond with JSON only, no other text:\n"
SCHEMA_IN_FORMAT = "Respond with JSON matching the schema provided in the format field."


def is_multi_monitor(changed: Sequence[ChangedMonitor], unchanged: Sequence[UnchangedMonitor]) -> bool:
    return len(changed) > 1 or len(unchanged) > 0


def build_context_section(contexts: Sequence[str]) -> str:
    if not contexts:
        return ""
    lines = ["Recent task history (most recent first):"]
    lines.extend(f"  {i}. {ctx}" for i, ctx in enumerate(contexts, start=1))
    lines.append(
        "Use this context to decide if the current screenshot shows a "
        "continuation of a recent task or a new one."
    )
    return "\n".join(lines) + "\n"


def build_single_prompt(
    contexts: Sequence[str],
    session_description: Optional[str] = None,
    structured_output: bool = False,
) -> str:
    """Prompt for one changed monitor with no other monitor context"""
    context_section = build_context_section(contexts)
    if session_description:
        intro = (
            f"The user is working on: {session_description}. "
            "Look at this screenshot and briefly describe what specific step "
            "or subtask they are currently on.\n"
        )
    else:
        intro = (
            "Analyze this screenshot of a user's screen. "
            "Determine what task they are working on.\n"
        )
    if structured_output:
        return intro + context_section + SCHEMA_IN_FORMAT
    return intro + context_section + JSON_ONLY + JSON_EXAMPLE + "}"


def build_multi_prompt(
    changed: Sequence[ChangedMonitor],
    unchanged: Sequence[UnchangedMonitor],
    contexts: Sequence[str],
    session_description: Optional[str] = None,
    structured_output: bool = False,
) -> str:
    """Prompt listing every changed monitor (with its image index) and the
    cached summaries of the monitors that did not change"""
    total = len(changed) + len(unchanged)

    monitors = ["MONITORS WITH NEW SCREENSHOTS (images attached in order):"]
    for i, monitor in enumerate(changed, start=1):
        primary = ", primary" if monitor.is_primary else ""
        monitors.append(
            f'- Monitor "{monitor.name}" ({monitor.width}x{monitor.height}{primary}): see image {i}'
        )
    if unchanged:
        monitors.append("")
        monitors.append("UNCHANGED MONITORS (text summary from last capture):")
        for monitor in unchanged:
            monitors.append(f'- Monitor "{monitor.name}": {monitor.summary}')
    monitors_section = "\n".join(monitors) + "\n"

    session_ctx = f"The user is working on: {session_description}.\n" if session_description else ""

    prompt = (
        "You are analyzing a multi-monitor desktop capture taken at a single moment.\n"
        f"The user has {total} monitors.\n\n"
        f"{monitors_section}\n"
        f"{session_ctx}"
        f"{build_context_section(contexts)}"
        "Analyze what the user is doing across all monitors. Focus on the changed "
        "monitor(s); a change on any monitor may indicate a task switch.\n\n"
    )
    if structured_output:
        return prompt + SCHEMA_IN_FORMAT

    names = [m.name for m in changed] + [m.name for m in unchanged]
    summaries = ", ".join(f'"{name}": "1-sentence description"' for name in names)
    return prompt + JSON_ONLY + JSON_EXAMPLE + f', "monitor_summaries": {{{summaries}}}}}'


def build_prompt(
    changed: Sequence[ChangedMonitor],
    unchanged: Sequence[UnchangedMonitor],
    contexts: Sequence[str],
    session_description: Optional[str] = None,
    structured_output: bool = False,
) -> str:
    if is_multi_monitor(changed, unchanged):
        return build_multi_prompt(changed, unchanged, contexts, session_description, structured_output)
    return build_single_prompt(contexts, session_description, structured_output)


def response_schema(multi_monitor: bool) -> Dict:
    """JSON schema for providers that support constrained output"""
    properties = {
        "task_title": {"type": "string"},
        "task_description": {"type": "string"},
        "category": {"type": "string", "enum": list(TASK_CATEGORIES)},
        "reasoning": {"type": "string"},
        "is_new_task": {"type": "boolean"},
    }
    required: List[str] = list(properties)
    if multi_monitor:
        properties["monitor_summaries"] = {"type": "object"}
        required.append("monitor_summaries")
    return {"type": "object", "properties": properties, "required": required}


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one"""
    cleaned = text.strip()
    if not cleaned.startswith("```"):
        return cleaned
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    else:
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_analysis(text: Optional[str]) -> TaskAnalysis:
    """Validate raw provider text into a TaskAnalysis

    Raises:
        EmptyResponseError: If there is no content
        ResponseParseError: If the content is not valid JSON for the schema
    """
    if text is None or not text.strip():
        raise EmptyResponseError("Empty response from provider")
    cleaned = strip_code_fences(text)
    try:
        return TaskAnalysis.model_validate(json.loads(cleaned))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse provider response: {e}; raw text: {cleaned[:500]}")
        raise ResponseParseError(f"Failed to parse JSON response: {e}")
    except ValidationError as e:
        logger.error(f"Provider response did not match schema: {e}")
        raise ResponseParseError(f"Response schema mismatch: {e}")
