"""
Generation State Definition for PathFlow

This module defines the GenerationState TypedDict that flows through the
LangGraph provider cascade. All nodes must accept and return updates to this
structure.
"""

from typing import TypedDict, List, Optional


class GenerationState(TypedDict):
    """
    The state object that flows through the learning path workflow.

    Each provider tier either fills `learning_path` and `generated_by` or
    appends a message to `provider_errors` and hands over to the next tier.
    """

    # --- Input ---
    skills: List[str]
    goal: str
    user_id: Optional[str]

    # --- Prompt ---
    prompt: Optional[str]

    # --- Output ---
    learning_path: Optional[List[dict]]  # [{step_number, title, description, duration, resources, skills}]
    generated_by: Optional[str]  # gemini_rest | gemini_sdk | openai | fallback
    provider_errors: List[str]


def initial_state(skills: List[str], goal: str, user_id: Optional[str] = None) -> GenerationState:
    return {
        "skills": skills,
        "goal": goal,
        "user_id": user_id,
        "prompt": None,
        "learning_path": None,
        "generated_by": None,
        "provider_errors": [],
    }
