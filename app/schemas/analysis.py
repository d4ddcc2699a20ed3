from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional, Union


class CamelModel(BaseModel):
    """Accepts and emits the camelCase keys used by the web client."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(CamelModel):
    video_base64: Optional[str] = None
    mime_type: Optional[str] = None
    language: Optional[str] = "es"
    topic: Optional[str] = None
    audience: Optional[str] = None
    goal: Optional[str] = None
    video_duration: Optional[float] = None  # seconds, measured by the recorder


# --- Analysis result returned by the model ---

class FillerWord(CamelModel):
    word: str
    count: int = 0


class Pacing(CamelModel):
    status: Optional[str] = None  # Lento / Normal / Rápido (or English equivalents)
    wpm: Optional[float] = None
    feedback: Optional[str] = None


class Emotion(CamelModel):
    name: str
    percentage: float = 0


class BodyLanguage(CamelModel):
    eye_contact: Optional[str] = None
    posture: Optional[str] = None
    gestures: Optional[str] = None
    feedback: Optional[str] = None


class SpeechAnalysis(CamelModel):
    clarity: Optional[str] = None
    coherence: Optional[str] = None
    persuasion: Optional[str] = None
    feedback: Optional[str] = None


class VocalAnalysis(CamelModel):
    tone_variety: Optional[str] = None
    volume_control: Optional[str] = None
    articulation: Optional[str] = None
    feedback: Optional[str] = None


class ImageAnalysis(CamelModel):
    attire: Optional[str] = None
    hair: Optional[str] = None
    face: Optional[str] = None
    feedback: Optional[str] = None


class ActionPlan(CamelModel):
    exercises: List[str] = Field(default_factory=list)
    dynamics: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)


class AnalysisResult(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    overall_score: float
    summary: str
    filler_words: List[FillerWord] = Field(default_factory=list)
    pacing: Pacing = Field(default_factory=Pacing)
    emotions: List[Emotion] = Field(default_factory=list)
    body_language: BodyLanguage = Field(default_factory=BodyLanguage)
    speech_analysis: SpeechAnalysis = Field(default_factory=SpeechAnalysis)
    improvement_tips: List[str] = Field(default_factory=list)
    action_plan: ActionPlan = Field(default_factory=ActionPlan)
    # Premium only
    vocal_analysis: Optional[VocalAnalysis] = None
    image_analysis: Optional[ImageAnalysis] = None

    def to_client(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class UsageSummary(CamelModel):
    tier: str
    remaining_this_month: Union[int, str]


class AnalyzeResponse(CamelModel):
    success: bool = True
    analysis: Dict[str, Any]
    usage: UsageSummary


# --- History ---

class SaveAnalysisRequest(CamelModel):
    analysis: Dict[str, Any]
    topic: Optional[str] = None
    audience: Optional[str] = None
    goal: Optional[str] = None
    language: Optional[str] = "es"


class HistoryItem(BaseModel):
    id: int
    created_at: Optional[str] = None
    overall_score: Optional[float] = None
    summary: Optional[str] = None
    topic: Optional[str] = None
    audience: Optional[str] = None
    goal: Optional[str] = None
    language: Optional[str] = None
    tier_at_analysis: str
    analysis: Dict[str, Any]
