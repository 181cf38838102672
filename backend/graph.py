"""
LangGraph Workflow for PathFlow learning path generation

This module implements the provider cascade as a graph:
- Prompt construction from skills and goal
- Gemini REST -> Gemini SDK -> OpenAI, each tier parsed before it counts
- Static template when every live tier has failed
"""

import logging
from typing import Literal, Optional

from langgraph.graph import StateGraph, END
from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
from psycopg_pool import AsyncConnectionPool

import providers
from parsing import LearningPathParseError, parse_learning_path
from state import GenerationState

logger = logging.getLogger(__name__)


# ============================================================================
# NODE FUNCTIONS
# ============================================================================

async def build_prompt_node(state: GenerationState) -> GenerationState:
    logger.info(f"[BuildPrompt] Goal: {state['goal']}, skills: {len(state['skills'])}")
    return {
        **state,
        "prompt": providers.build_learning_path_prompt(state["skills"], state["goal"]),
    }


def make_provider_node(name: str):
    """Create the node for one live tier."""

    async def provider_node(state: GenerationState) -> GenerationState:
        logger.info(f"[{name}] Requesting learning path...")
        try:
            text = await providers.call_provider(name, state["prompt"])
            steps = parse_learning_path(text)
        except providers.ProviderUnavailable as e:
            logger.info(f"[{name}] Skipped: {e}")
            return {**state, "provider_errors": state["provider_errors"] + [f"{name}: {e}"]}
        except (providers.ProviderError, LearningPathParseError) as e:
            logger.warning(f"[{name}] Failed: {e}")
            return {**state, "provider_errors": state["provider_errors"] + [f"{name}: {e}"]}

        logger.info(f"[{name}] Generated {len(steps)} steps")
        return {**state, "learning_path": steps, "generated_by": name}

    provider_node.__name__ = f"{name}_node"
    return provider_node


async def fallback_node(state: GenerationState) -> GenerationState:
    logger.warning(f"[Fallback] All providers failed, using template: {state['provider_errors']}")
    return {
        **state,
        "learning_path": providers.fallback_learning_path(state["skills"], state["goal"]),
        "generated_by": "fallback",
    }


def route_after(next_node: str):
    """Conditional edge: stop once a tier produced a path, else hand over."""

    def route(state: GenerationState) -> Literal["done", "next"]:
        return "done" if state.get("learning_path") else "next"

    route.__name__ = f"route_to_{next_node}"
    return route


# ============================================================================
# GRAPH CONSTRUCTION
# ============================================================================

def create_learning_path_graph(checkpointer=None):
    workflow = StateGraph(GenerationState)

    workflow.add_node("build_prompt", build_prompt_node)
    for name in providers.PROVIDER_ORDER:
        workflow.add_node(name, make_provider_node(name))
    workflow.add_node("fallback", fallback_node)

    workflow.set_entry_point("build_prompt")
    workflow.add_edge("build_prompt", providers.PROVIDER_ORDER[0])

    # Each live tier hands over to the next one, the last one to the template
    tiers = list(providers.PROVIDER_ORDER) + ["fallback"]
    for current, following in zip(tiers, tiers[1:]):
        workflow.add_conditional_edges(
            current,
            route_after(following),
            {"done": END, "next": following}
        )

    workflow.add_edge("fallback", END)

    return workflow.compile(checkpointer=checkpointer)


# ============================================================================
# GRAPH INSTANCE
# ============================================================================

async def get_graph(pool: Optional[AsyncConnectionPool] = None):
    """Returns the compiled graph, checkpointed in PostgreSQL when a pool is given."""
    if pool is None:
        logger.warning("[Graph] No database pool, generation runs will not be checkpointed")
        return create_learning_path_graph()

    checkpointer = AsyncPostgresSaver(pool)
    await checkpointer.setup()
    return create_learning_path_graph(checkpointer)
