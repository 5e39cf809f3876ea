"""Pydantic models for meal plan requests, plans and validation results."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from input_sanitizer import (
    NUMERIC_BOUNDS,
    sanitize_free_text,
    sanitize_number,
    sanitize_string,
    sanitize_string_list,
)
from macro_calculator import calculate_daily_calories

PlanType = Literal["daily", "weekly", "monthly"]
Severity = Literal["critical", "warning"]

DEFAULT_DURATIONS = {"daily": 1, "weekly": 7, "monthly": 30}
MAX_DURATION_DAYS = 30

SAFETY_CODES = frozenset({"ALLERGEN_VIOLATION", "RELIGIOUS_VIOLATION"})


# ============================================================================
# Request models
# ============================================================================


class UserProfile(BaseModel):
    """Immutable user profile for one generation request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    gender: str = Field(default="", description="male / female / other")
    age: Optional[float] = Field(default=None, description="Age in years")
    height: Optional[float] = Field(default=None, description="Height in cm")
    current_weight: Optional[float] = Field(
        default=None, alias="currentWeight", description="Current weight in kg"
    )
    target_weight: Optional[float] = Field(
        default=None, alias="targetWeight", description="Target weight in kg"
    )
    goal: str = Field(default="health", description="lose_weight, maintain, build_muscle...")
    activity: str = Field(default="moderate", description="sedentary .. athlete")
    diet: List[str] = Field(default_factory=list, description="vegetarian, vegan...")
    religious: str = Field(default="none", description="halal, kosher, jain, hindu...")
    conditions: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    cultural_background: str = Field(default="", alias="culturalBackground")
    cuisine_preference: str = Field(default="", alias="cuisinePreference")
    notes: str = Field(default="", description="Free-text notes from the user")

    @field_validator(
        "gender",
        "goal",
        "activity",
        "religious",
        "cultural_background",
        "cuisine_preference",
        mode="before",
    )
    @classmethod
    def _sanitize_short_text(cls, value: Any) -> str:
        return sanitize_string(value, 200) if value is not None else ""

    @field_validator("goal", "activity", "religious", mode="after")
    @classmethod
    def _lowercase_enum_like(cls, value: str) -> str:
        return value.strip().lower().replace(" ", "_").replace("-", "_")

    @field_validator("diet", "conditions", "allergies", "medications", mode="before")
    @classmethod
    def _sanitize_lists(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [part for part in value.split(",")]
        return sanitize_string_list(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _sanitize_notes(cls, value: Any) -> str:
        return sanitize_free_text(value, "notes")

    @field_validator("age", "height", "current_weight", "target_weight", mode="before")
    @classmethod
    def _clamp_numbers(cls, value: Any, info) -> Optional[float]:
        low, high = NUMERIC_BOUNDS[info.field_name]
        return sanitize_number(value, low, high)


class PlanRequest(BaseModel):
    """A single meal plan generation request."""

    model_config = ConfigDict(populate_by_name=True)

    plan_type: PlanType = Field(default="weekly", alias="planType")
    duration: Optional[int] = Field(
        default=None, ge=1, le=MAX_DURATION_DAYS, description="Days to generate"
    )
    target_calories: Optional[int] = Field(
        default=None, alias="targetCalories", ge=800, le=6000
    )
    profile: UserProfile = Field(default_factory=UserProfile)

    @model_validator(mode="after")
    def _fill_defaults(self) -> "PlanRequest":
        if self.duration is None:
            self.duration = DEFAULT_DURATIONS[self.plan_type]
        if self.target_calories is None:
            self.target_calories = calculate_daily_calories(self.profile)
        return self


# ============================================================================
# Plan models (promotion target for validated generated JSON)
# ============================================================================


class Nutrition(BaseModel):
    model_config = ConfigDict(extra="allow")

    calories: float
    protein: float
    carbs: float
    fat: float
    fiber: Optional[float] = None
    sodium: Optional[float] = None


class Meal(BaseModel):
    """A single meal or snack."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    ingredients: List[str] = Field(..., min_length=3)
    instructions: str = Field(..., min_length=50)
    nutrition: Nutrition
    allergens: Optional[List[str]] = None
    portion_size: Optional[str] = Field(default=None, alias="portionSize")
    swaps: Optional[List[Any]] = None


class Snack(Meal):
    """Snacks may be assembly-only: fewer ingredients, short instructions."""

    ingredients: List[str] = Field(..., min_length=1)
    instructions: str = Field(..., min_length=1)
    portion_size: str = Field(..., min_length=1, alias="portionSize")


class DayMeals(BaseModel):
    breakfast: Meal
    lunch: Meal
    dinner: Meal
    snacks: List[Snack] = Field(default_factory=list)


class Day(BaseModel):
    day: int = Field(..., ge=1)
    meals: DayMeals


class MacroSummary(BaseModel):
    protein: float
    carbs: float
    fat: float


class PlanOverview(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    daily_calories: float = Field(..., alias="dailyCalories")
    macros: MacroSummary
    duration: int = Field(..., ge=1, le=MAX_DURATION_DAYS)
    type: PlanType


class MealPlan(BaseModel):
    """Fully validated (or leniently accepted) plan handed to the caller."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    overview: PlanOverview
    days: List[Day]
    grocery_list: Dict[str, List[str]] = Field(..., alias="groceryList")
    validation_notes: List[str] = Field(default_factory=list, alias="validationNotes")

    @model_validator(mode="after")
    def _days_match_duration(self) -> "MealPlan":
        if len(self.days) != self.overview.duration:
            raise ValueError(
                f"Plan has {len(self.days)} days but overview.duration is {self.overview.duration}"
            )
        return self

    def to_document(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used by stored plan documents."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# Validation results
# ============================================================================


class Violation(BaseModel):
    """A machine-detected rule breach in a generated plan."""

    severity: Severity
    code: str
    message: str
    field_path: str = Field(default="", alias="fieldPath")
    suggested_fix: Optional[str] = Field(default=None, alias="suggestedFix")
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_safety(self) -> bool:
        return self.code in SAFETY_CODES

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"


class ValidationResult(BaseModel):
    passed: bool
    violations: List[Violation] = Field(default_factory=list)

    @property
    def critical(self) -> List[Violation]:
        return [v for v in self.violations if v.is_critical]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if not v.is_critical]

    @property
    def safety(self) -> List[Violation]:
        return [v for v in self.violations if v.is_safety]

    def rank(self) -> tuple:
        """Sort key: fewer safety, then fewer critical violations is better."""
        return (len(self.safety), len(self.critical))


class AggregatedIngredient(BaseModel):
    """One consolidated grocery line built by the aggregator."""

    model_config = ConfigDict(frozen=True)

    canonical_name: str
    total_base_amount: float
    base_unit: Literal["ml", "g", "count"]
    rendered_quantity: str
    category: str = "pantry"
    count_unit: Optional[str] = None

    @property
    def line(self) -> str:
        return f"{self.rendered_quantity} {self.canonical_name}"
