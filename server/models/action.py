"""Planner action and plan data models"""
from enum import Enum
from pydantic import BaseModel
from typing import Optional


class Action(str, Enum):
    """Every conversational action the engine can take for a turn"""
    SEARCH = "SEARCH"
    FOLLOWUP = "FOLLOWUP"
    EXPLAIN = "EXPLAIN"
    RESHOW = "RESHOW"
    EXIT_RESTAURANT = "EXIT_RESTAURANT"
    SHOW_MENU = "SHOW_MENU"
    CLARIFY = "CLARIFY"
    RESTAURANT_LOOKUP = "RESTAURANT_LOOKUP"


class SearchOverride(BaseModel):
    """Search parameters forced by the planner.

    ``query_text=None`` means a tag-only search even if the intent
    carries a dish query.
    """
    query_text: Optional[str] = None
    tags: list[str] = []
    city: Optional[str] = None
    budget_max: Optional[float] = None


class PrefsPatch(BaseModel):
    language: Optional[str] = None
    dietary: Optional[list[str]] = None
    city: Optional[str] = None
    budget_max: Optional[float] = None


class Plan(BaseModel):
    """Planner decision, consumed once by the engine"""
    action: Action
    confidence: float = 1.0
    reason: str = ""
    prefs_patch: PrefsPatch = PrefsPatch()
    dish_query: Optional[str] = None
    search: Optional[SearchOverride] = None
    restaurant_scoped: bool = False  # search inside one named restaurant


class LLMPlan(BaseModel):
    """Raw planner output as returned by the LLM (validated before use)"""
    action: str
    confidence: float = 0.0
    reason: str = ""
    dish_query: Optional[str] = None
    search_query_text: Optional[str] = None
