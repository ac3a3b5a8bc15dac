from typing import Optional

from muni_core.models import ActionRecord, BillSnapshot
from muni_core.schemas import ACTION_TYPES, MUNICIPAL_ROLES

ANALYST_ROLE = (
    "You are a municipal policy analyst for Massachusetts local government. Your role is to "
    "interpret state legislation for municipal officials, focusing exclusively on operational implications."
)

# Response shape shared by the holistic and single-action prompts
ANALYSIS_JSON_SCHEMA = f"""{{
  "summary": "2-3 sentence factual summary of what this bill specifically does based on the full text, citing key provisions, and where it currently stands in the legislative process",

  "why_it_matters": "1-2 paragraphs explaining concrete operational implications based on specific bill provisions. Reference actual sections or requirements from the bill text.",

  "who_should_care": ["Array of 1-4 relevant municipal roles, exactly as written, from: {', '.join(MUNICIPAL_ROLES)}"],

  "what_to_do": "Exactly one of: monitor (early stage), prepare (advancing through the legislature), act (enacted or imminent)",

  "recommended_next_steps": ["Array of 1-3 specific, actionable steps based on what the bill requires and its current legislative stage"],

  "urgency": "Exactly one of: low, medium, high",

  "action_types": ["Array of 1-3 categories, exactly as written, from: {', '.join(ACTION_TYPES)}"],

  "confidence": "Exactly one of: low (bill text unclear or incomplete), medium (can infer likely impact), high (clear requirements and implications)",

  "model_notes": "Limitations of this analysis - missing effective dates, unclear implementation details, need for legal review, incomplete bill text, etc.",

  "citations": [
    {{
      "label": "Short label for the cited source",
      "supporting_text": "Short quote from the bill text or history",
      "location": "Section number or history date"
    }}
  ]
}}"""

CRITICAL_REQUIREMENTS = """- Use neutral, professional language suitable for municipal administrators
- Cite specific provisions and sections from the bill text when explaining what it does
- Be concrete about operational impacts based on actual bill language
- Avoid political framing or policy commentary
- Assess urgency based on where the bill is in the legislative process (early stage = monitor, advancing = prepare, enacted = act)
- Be explicit about uncertainties (e.g., effective dates, implementation details)
- Enumerated fields must use the listed values verbatim"""


def format_history(actions) -> str:
    if not actions:
        return "No legislative history published."
    return "\n".join(f"{a.date} - {a.branch} - {a.text}" for a in actions)


def build_relevance_prompt(snapshot: BillSnapshot) -> str:
    """Narrow stage-2 screening question."""
    return f"""You are screening Massachusetts legislation for municipal government relevance.

BILL: {snapshot.identifier}
TITLE: {snapshot.title}
STATUS: {snapshot.current_status}

Question: Does this bill operationally affect municipal government (cities, towns, local officials, municipal operations, local services)?

Respond with ONLY valid JSON:
{{
  "relevant": true or false,
  "confidence": "low", "medium", or "high",
  "reason": "One sentence explaining why it is or isn't relevant"
}}"""


def _bill_header(snapshot: BillSnapshot) -> str:
    return f"""BILL INFORMATION:
Title: {snapshot.title}
Bill Number: {snapshot.identifier}
Current Status: {snapshot.current_status}
Source: {snapshot.source_url}

FULL BILL TEXT:
{snapshot.analysis_text}"""


def build_bill_analysis_prompt(snapshot: BillSnapshot) -> str:
    """
    Holistic prompt over the complete history.

    Args:
        snapshot: Bill snapshot; status text stands in when full text is missing

    Returns:
        Complete prompt string for the analysis engine
    """
    return f"""{ANALYST_ROLE}

{_bill_header(snapshot)}

COMPLETE BILL HISTORY:
{format_history(snapshot.action_history)}

ANALYSIS INSTRUCTIONS:
Analyze this bill comprehensively as a municipal operations analyst would. Read the full bill text and legislative history carefully and focus on:
1. What this bill specifically does (cite actual provisions and sections)
2. The bill's current stage in the legislative process based on its complete history
3. Concrete operational implications for municipal government
4. Which municipal roles need to know about this
5. What preparatory actions are warranted given the bill's current stage

CRITICAL REQUIREMENTS:
{CRITICAL_REQUIREMENTS}
- Reference the bill's legislative history to show progression

Respond with ONLY valid JSON (no markdown, no preamble):

{ANALYSIS_JSON_SCHEMA}"""


def build_action_analysis_prompt(snapshot: BillSnapshot, action: ActionRecord, prior_actions: Optional[list] = None) -> str:
    """Prompt scoped to one triggering action, with earlier history as context."""
    if prior_actions is None:
        history = list(snapshot.action_history)
        prior_actions = history[:history.index(action)] if action in history else history
    return f"""{ANALYST_ROLE}

{_bill_header(snapshot)}

NEW LEGISLATIVE ACTION:
{action.date} - {action.branch} - {action.text}

EARLIER HISTORY (context only):
{format_history(prior_actions)}

ANALYSIS INSTRUCTIONS:
A new action was just recorded on this bill. Explain what this specific action means for municipal government:
1. What the action does procedurally and where it leaves the bill
2. What the bill requires of municipalities (cite provisions and sections)
3. Which municipal roles need to know about this action now
4. What preparatory actions are warranted at this stage

CRITICAL REQUIREMENTS:
{CRITICAL_REQUIREMENTS}
- Cite the new action in citations

Respond with ONLY valid JSON (no markdown, no preamble):

{ANALYSIS_JSON_SCHEMA}"""
