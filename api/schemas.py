# standardize base schemas for repeated payload patterns

from typing import Optional

from pydantic import BaseModel, Field


# Validate / standardize input JSON payload format for /logs
# symptoms and causes are free-text names; severity is the 1-5 scale
class LogIn(BaseModel):
    user_id: int
    logged_at: Optional[str] = None
    symptoms: list[str] = Field(default_factory=list)
    causes: list[str] = Field(default_factory=list)
    severity: Optional[int] = None
    resolution: Optional[str] = None
    resolution_effectiveness: Optional[int] = None
    notes: Optional[str] = None
    atmospheric_pressure: Optional[str] = None
    moon_phase: Optional[str] = None
    season: Optional[str] = None


class WarningOut(BaseModel):
    severity: str
    trigger: str
    symptom: str
    text: str
    confidence_level: str
    confidence_score: float
    occurrence_count: int
    memory_key: str
    memory_id: Optional[int] = None


class ObservationOut(BaseModel):
    kind: str
    symptom: str
    text: str
    confidence_level: str
    confidence_score: float
    occurrence_count: int
    memory_key: str
    memory_id: Optional[int] = None


class SuggestionOut(BaseModel):
    resolution: str
    symptom: str
    text: str
    effectiveness_percentage: int
    occurrence_count: int
    memory_key: str
    memory_id: Optional[int] = None


class QuestionOut(BaseModel):
    text: str
    options: list[str]
    relates_to: str
    symptom: str
    context: Optional[str] = None


class NeedsMoreDataOut(BaseModel):
    text: str
    data_needed: list[str]
    current_progress: Optional[str] = None
    symptom: Optional[str] = None


class InsightResponseOut(BaseModel):
    warnings: list[WarningOut] = Field(default_factory=list)
    observations: list[ObservationOut] = Field(default_factory=list)
    suggestions: list[SuggestionOut] = Field(default_factory=list)
    questions: list[QuestionOut] = Field(default_factory=list)
    needs_more_data: Optional[NeedsMoreDataOut] = None
    has_content: bool = False


# echo of the stored entry plus what the engine had to say about it
class LogOut(BaseModel):
    id: int
    user_id: int
    logged_at: str
    symptoms: list[str]
    causes: list[str]
    severity: int
    resolution: Optional[str] = None
    resolution_effectiveness: Optional[int] = None
    insights: InsightResponseOut
    cloud_text: Optional[str] = None


class MemoryOut(BaseModel):
    id: Optional[int] = None
    memory_key: str
    kind: str
    trigger: Optional[str] = None
    symptom: Optional[str] = None
    resolution: Optional[str] = None
    occurrence_count: int
    confidence_score: float
    confidence_level: str
    effectiveness_score: Optional[float] = None
    effectiveness_percentage: Optional[int] = None
    user_confirmed: bool
    user_denied: bool
    is_active: bool
    notes: Optional[str] = None
    last_observed_at: Optional[str] = None
    created_at: str


class MemorySummaryOut(BaseModel):
    user_id: int
    triggers: list[str]
    what_helps: list[str]
    patterns: list[str]
    text: str


class RebuildIn(BaseModel):
    user_id: int
    memory_detail_level: Optional[str] = Field(default=None, pattern="^(minimal|patterns|full|detailed)$")


class RebuildOut(BaseModel):
    user_id: int
    memory_detail_level: str
    entries_seen: int
    entries_skipped: int
    memories_tracked: int
    memories_visible: int


class MemoryFeedbackIn(BaseModel):
    user_id: int
    feedback: str = Field(pattern="^(confirm|deny|helped|didntHelp|notSureYet|notRelevant)$")


class FoodCheckIn(BaseModel):
    user_id: int
    food_name: str = Field(min_length=1)


class FoodCheckOut(BaseModel):
    food_name: str
    status: str
    explanation: str
    cross_reaction_source: Optional[str] = None
    related_allergy: Optional[str] = None
    additional_notes: list[str] = Field(default_factory=list)
    memory_key: Optional[str] = None


class TrackedItemIn(BaseModel):
    user_id: int
    name: str = Field(min_length=1)
    item_type: str = Field(default="supplement", pattern="^(supplement|medication|food)$")
    is_active: bool = True


class TrackedItemOut(BaseModel):
    id: int
    user_id: int
    name: str
    item_type: str
    is_active: bool


class AllergyIn(BaseModel):
    user_id: int
    name: str = Field(min_length=1)
    severity: str = Field(default="moderate", pattern="^(mild|moderate|severe)$")
    cross_reactive_items: list[str] = Field(default_factory=list)
    known_reactions: list[str] = Field(default_factory=list)
    helpful_medications: list[str] = Field(default_factory=list)


class AllergyOut(AllergyIn):
    id: int
