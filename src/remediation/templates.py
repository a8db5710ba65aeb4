"""
Suggestion templates keyed by struggle type. Text fields are formatted
with the struggling topic.
"""

from typing import Dict, List

from src.repository.models import StruggleType, SuggestionType


REMEDIATION_TEMPLATES: Dict[StruggleType, List[Dict]] = {
    StruggleType.QUIZ_FAILURE: [
        {
            "type": SuggestionType.EXPLANATION,
            "title": "Let's break down {topic}",
            "content": (
                "A few attempts on {topic} didn't land. Here is a step-by-step "
                "explanation of the key ideas before you try again."
            ),
            "action_label": "Show explanation",
        },
        {
            "type": SuggestionType.MICROLEARNING,
            "title": "2-minute refresher: {topic}",
            "content": "Watch a short focused lesson on {topic}, then return to the quiz.",
            "action_label": "Start refresher",
        },
    ],
    StruggleType.EXCESSIVE_PAUSES: [
        {
            "type": SuggestionType.EXPLANATION,
            "title": "Need a hand with {topic}?",
            "content": (
                "You've paused a few times in this part. Here's a plain-language "
                "explanation of {topic} to help it click."
            ),
            "action_label": "Explain this part",
        },
    ],
    StruggleType.VIDEO_SKIPPING: [
        {
            "type": SuggestionType.REMINDER,
            "title": "You skipped part of {topic}",
            "content": (
                "The section you skipped covers {topic}, which the quiz relies on. "
                "Here's a quick summary of what you missed."
            ),
            "action_label": "View summary",
        },
    ],
    StruggleType.HELP_REQUESTS: [
        {
            "type": SuggestionType.PEER_SUPPORT,
            "title": "Talk {topic} through with a peer",
            "content": (
                "Others have worked through {topic} recently. Connect with a "
                "peer or mentor for a quick walkthrough."
            ),
            "action_label": "Find a study partner",
        },
    ],
    StruggleType.COACH_ACTIVATION: [
        {
            "type": SuggestionType.EXAMPLE,
            "title": "Worked example: {topic}",
            "content": "See {topic} applied step by step in a realistic workplace scenario.",
            "action_label": "Show example",
        },
    ],
}


def render_templates(struggle_type: StruggleType, topic: str) -> List[Dict]:
    """Template dicts for a struggle type with the topic filled in."""
    rendered = []
    for template in REMEDIATION_TEMPLATES.get(struggle_type, []):
        rendered.append({
            "type": template["type"],
            "title": template["title"].format(topic=topic),
            "content": template["content"].format(topic=topic),
            "action_label": template["action_label"],
        })
    return rendered
