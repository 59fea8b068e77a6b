"""Intent data models"""
from pydantic import BaseModel, field_validator
from typing import Optional


class Intent(BaseModel):
    """Structured reading of one user turn"""
    dish_query: Optional[str] = None
    city: Optional[str] = None
    dietary: list[str] = []  # canonical English terms: vegan, halal, gluten free...
    allergy: list[str] = []
    ingredients: list[str] = []
    hard_tags: list[str] = []  # constraints that need an explicit tag match
    price_max: Optional[float] = None
    language: str = "en"
    original_query: str = ""
    is_vague: bool = False
    restaurant_name: Optional[str] = None
    cuisine: Optional[str] = None
    show_menu: bool = False
    is_drink: bool = False
    is_followup: bool = False
    exit_restaurant: bool = False
    is_restaurant_lookup: bool = False

    @field_validator("dietary", "allergy", "ingredients", "hard_tags", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        # LLMs send null for empty arrays
        return v or []

    @field_validator("language", mode="before")
    @classmethod
    def _default_language(cls, v):
        return v or "en"

    @property
    def tag_terms(self) -> list[str]:
        """Dietary and allergy terms that should resolve to catalogue tags."""
        return [*self.dietary, *self.allergy]
