"""Pydantic models for storyboard scenes."""

from typing import Optional

from pydantic import BaseModel, Field

NARRATOR_SPEAKER = "narrator"


class DialogueLine(BaseModel):
    speaker: str
    text: str
    emotional_state: Optional[str] = None
    tone: Optional[str] = None
    pace: Optional[str] = None

    @property
    def is_narrator(self) -> bool:
        return self.speaker.strip().lower() == NARRATOR_SPEAKER


class Scene(BaseModel):
    id: int
    time_range: str = Field(default="", description="Display only, e.g. '00:00 - 00:08'")
    visual_description: str = ""
    audio_description: str = ""
    camera_shot: str = ""
    voiceover_text: str = ""
    dialogue: Optional[list[DialogueLine]] = None
