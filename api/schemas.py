from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from analysis.utils import Exercise


class KeypointIn(BaseModel):
    name: str
    x: float
    y: float
    score: float = Field(1.0, ge=0.0, le=1.0)


class ExerciseRequest(BaseModel):
    # canonical names, or spellings Exercise.parse understands ("push-up", "wall_sit")
    exercise: Exercise

    @field_validator("exercise", mode="before")
    @classmethod
    def parse_exercise(cls, value: object) -> Exercise:
        if isinstance(value, str):
            return Exercise.parse(value)
        return value  # type: ignore[return-value]


class StartRequest(ExerciseRequest):
    config: Dict[str, float] = Field(default_factory=dict)
    speak_locally: bool = Field(False, description="also voice cues on this machine through pyttsx3")


class FrameRequest(BaseModel):
    timestamp: float = Field(description="seconds on the client's monotonic clock")
    keypoints: Optional[List[KeypointIn]] = Field(
        default=None, description="null when the client's detector found no pose"
    )


class SessionResponse(BaseModel):
    session_id: str
    exercise: Exercise


class EventOut(BaseModel):
    kind: str = Field(description="rep | holdSecond")
    index: int = Field(ge=1)
    was_correct: bool


class CycleResponse(BaseModel):
    exercise: Exercise
    form_correct: bool
    cue: str
    status: str = Field(description="good | bad | neutral")
    event: Optional[EventOut] = None
    speak: Optional[str] = Field(default=None, description="text to hand to the speech sink, if any")
    reps: int = Field(0, ge=0)
    hold_seconds: int = Field(0, ge=0)
    hold_current: int = Field(0, ge=0)
    hold_best: int = Field(0, ge=0)
