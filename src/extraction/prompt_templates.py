"""Prompt builders for the actionability classifier, the signal interpreter and
the create_post drafter.

All prompts ask Gemini for JSON matching the schemas in
``src.extraction.models``; few-shot examples pin down the edge cases
(auto-replies, greetings, multi-request messages).
"""

import hashlib
import json
from typing import Any, Dict, List, Sequence

from src.extraction.models import FeedbackSignal, SignalType
from src.ingestion.models import RawFeedbackItem


# ============================================================================
# Actionability classifier
# ============================================================================

CLASSIFIER_SYSTEM_PROMPT = """You triage inbound customer messages for a product team.

Decide whether the message contains ACTIONABLE PRODUCT FEEDBACK: a feature request,
a bug report, a usability problem, or a concrete question about how the product works.

NOT actionable:
- Greetings, thanks, sign-offs ("hi", "thanks!", "have a nice day")
- Out-of-office and other auto-replies
- Support acknowledgements ("ticket received", "we'll get back to you")
- Billing or account admin with no product angle
- Spam and marketing

Respond with JSON: {"actionable": true|false, "rationale": "<one sentence>"}."""

CLASSIFIER_EXAMPLES: List[Dict[str, Any]] = [
    {
        "input": "I'm out of the office until Monday with limited access to email.",
        "output": {"actionable": False, "rationale": "Automatic out-of-office reply."},
    },
    {
        "input": "Thanks so much for the quick help earlier, all sorted now!",
        "output": {"actionable": False, "rationale": "Gratitude only; no product feedback."},
    },
    {
        "input": "Would be great if we could export the weekly report as a PDF instead of CSV.",
        "output": {"actionable": True, "rationale": "Requests a new export format."},
    },
]


def build_classifier_prompt(text: str) -> str:
    """Build the actionability classification prompt for one message."""
    examples = []
    for i, example in enumerate(CLASSIFIER_EXAMPLES, 1):
        examples.append(f"### Example {i}")
        examples.append(f"Message:\n{example['input']}")
        examples.append(f"Answer:\n{json.dumps(example['output'])}")
        examples.append("")

    return "\n".join([
        CLASSIFIER_SYSTEM_PROMPT,
        "",
        "## Examples",
        "",
        "\n".join(examples),
        "## Message",
        "",
        text,
    ])


# ============================================================================
# Signal interpreter
# ============================================================================

SIGNAL_TYPE_DESCRIPTIONS: Dict[str, str] = {
    SignalType.FEATURE_REQUEST.value: "Asks for new functionality or an extension of existing behaviour",
    SignalType.BUG_REPORT.value: "Describes something broken, erroring or behaving incorrectly",
    SignalType.USABILITY_ISSUE.value: "Works as designed but is confusing, slow or awkward to use",
    SignalType.QUESTION.value: "Asks how the product works or whether something is possible",
    SignalType.PRAISE.value: "Positive feedback about a specific capability",
    SignalType.OTHER.value: "Product-relevant feedback that fits no other type",
}

INTERPRETER_SYSTEM_PROMPT = """You extract product signals from customer feedback.

A message may contain several distinct signals; return each one separately.
For each signal provide:
1. **signal_type**: one of the types below
2. **summary**: one sentence, written as the underlying need (max 150 chars)
3. **evidence**: short verbatim quotes from the message supporting the signal
4. **implicit_need**: the goal behind the request, if it differs from the literal ask
5. **confidence**: 0.0-1.0, how sure you are this is a genuine product signal

## Signal Types

{type_descriptions}

Return {{"signals": []}} if the message holds no product signal."""


def build_interpreter_prompt(text: str) -> str:
    """Build the signal extraction prompt for one message."""
    type_descriptions = "\n".join(
        f"- **{name}**: {description}" for name, description in SIGNAL_TYPE_DESCRIPTIONS.items()
    )
    return "\n".join([
        INTERPRETER_SYSTEM_PROMPT.format(type_descriptions=type_descriptions),
        "",
        "## Message",
        "",
        text,
        "",
        "Provide your answer as a JSON object.",
    ])


# ============================================================================
# Post drafter
# ============================================================================

POST_DRAFT_SYSTEM_PROMPT = """You turn a customer feedback signal into a post for a public feature-request board.

Write:
1. **title**: a short, neutral title naming the need (max 100 chars, no customer names)
2. **body**: two to four sentences describing the problem and the desired outcome,
   written for other customers reading the board. Do not quote private details.
3. **board_id**: the best board from the list below, or null if none fits
4. **reasoning**: one sentence explaining the title and board choice"""

MAX_SOURCE_TEXT_CHARS = 2000


def build_post_draft_prompt(
    signal: FeedbackSignal,
    item: RawFeedbackItem,
    board_ids: Sequence[str],
) -> str:
    """Build the create_post drafting prompt for one signal."""
    hints = item.envelope_hints
    lines = [
        POST_DRAFT_SYSTEM_PROMPT,
        "",
        "## Boards",
        "",
    ]
    lines.extend(f"- {board_id}" for board_id in board_ids)
    if not board_ids:
        lines.append("(no boards configured; use null)")

    lines.extend([
        "",
        "## Signal",
        "",
        f"Type: {signal.signal_type.value}",
        f"Summary: {signal.summary}",
    ])
    if signal.implicit_need:
        lines.append(f"Underlying need: {signal.implicit_need}")
    if signal.evidence:
        lines.append("Evidence:")
        lines.extend(f"- \"{quote}\"" for quote in signal.evidence)

    context = [
        (label, value)
        for label, value in (
            ("Channel", hints.channel),
            ("Customer tier", hints.customer_tier),
            ("Earlier in the thread", hints.thread_excerpt),
        )
        if value
    ]
    if context:
        lines.extend(["", "## Context", ""])
        lines.extend(f"{label}: {value}" for label, value in context)

    lines.extend(["", "## Original Message", ""])
    if item.content.subject:
        lines.append(f"Subject: {item.content.subject}")
    lines.append((item.content.text or "")[:MAX_SOURCE_TEXT_CHARS])
    lines.extend(["", "Provide your answer as a JSON object."])
    return "\n".join(lines)


def compute_prompt_hash(prompt: str) -> str:
    """SHA-256 of the prompt (first 16 hex chars) for log correlation."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]
