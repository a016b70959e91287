from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


Shape = Tuple[int, ...]
Instrument = Literal["synth", "piano", "brass", "sax", "clarinets", "strings"]


class Scale(str, Enum):
	ROOT = "root"
	MAJOR_DIATONIC = "major_diatonic"
	MINOR_DIATONIC = "minor_diatonic"
	MAJOR_CHROMATIC = "major_chromatic"
	MINOR_CHROMATIC = "minor_chromatic"


class Atonal(BaseModel):
	model_config = ConfigDict(frozen=True)
	kind: Literal["atonal"] = "atonal"


class FixedKey(BaseModel):
	model_config = ConfigDict(frozen=True)
	kind: Literal["fixed"] = "fixed"
	key_pc: int = Field(default=0, ge=0, le=11)


class RandomKey(BaseModel):
	model_config = ConfigDict(frozen=True)
	kind: Literal["random"] = "random"


Tonality = Annotated[Union[Atonal, FixedKey, RandomKey], Field(discriminator="kind")]


class Constraints(BaseModel):
	model_config = ConfigDict(frozen=True)

	card: Tuple[int, int] = Field(default=(3, 3))
	span: Tuple[int, int] = Field(default=(0, 12))
	midi_low: int = Field(default=48)
	midi_high: int = Field(default=72)
	tonality: Tonality = Field(default_factory=Atonal)
	scale: Scale = Field(default=Scale.ROOT)

	@property
	def is_tonal(self) -> bool:
		return not isinstance(self.tonality, Atonal)

	@property
	def log_tag(self) -> str:
		"""Name of the history bucket outcomes under these constraints go to."""
		if not self.is_tonal:
			return "ATONAL"
		return self.scale.value


class Settings(BaseModel):
	constraints: Constraints = Field(default_factory=Constraints)
	focus_ratio: float = Field(default=0.8, ge=0.0, le=1.0)
	instrument: Instrument = Field(default="synth")
	volume: float = Field(default=0.9, ge=0.0, le=1.0)


class OutcomeRecord(BaseModel):
	# older logs stored these as "rel" and "ok"
	shape: Shape = Field(validation_alias=AliasChoices("shape", "rel"))
	guess: Shape = Field(default=())
	correct: bool = Field(validation_alias=AliasChoices("correct", "ok"))


class AggregateStats(BaseModel):
	mastered_count: int = 0
	universe_size: int = 0
	is_approximate: bool = False


class Trial(BaseModel):
	shape: Shape
	root: int
	midis: List[int]
	gains: List[float]
	key_pc: Optional[int] = None
	answered: bool = False


class SubmitResult(BaseModel):
	ok: Optional[bool]
	truth: Optional[Shape] = None
	guess: Optional[Shape] = None


class FeedbackSummary(BaseModel):
	ok: Optional[bool]
	truth: Shape
	guess: Shape
	shape_correct: int
	window: int
	min_accuracy: float
	overall_accuracy: int
	mastered: AggregateStats


class UserData(BaseModel):
	settings: Settings = Field(default_factory=Settings)
	logs: Dict[str, List[OutcomeRecord]] = Field(default_factory=dict)
