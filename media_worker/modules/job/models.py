"""In-memory job model and state machine.

Extraction: queued -> downloading -> probing -> extracting_audio[i/N]
-> extracting_subtitles[j/M] -> ready | error

Transcode: queued -> downloading -> transcoding_<quality> (ascending)
-> ready | error

States only move forward; ``error`` is reachable from any non-terminal
state and both ``ready`` and ``error`` are final.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class JobKind(str, Enum):
    """Kinds of work the dispatcher runs."""
    EXTRACT = "extract"
    TRANSCODE = "transcode"


class JobPhase(str, Enum):
    """Coarse job phase; the state adds the per-item payload."""
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    PROBING = "probing"
    EXTRACTING_AUDIO = "extracting_audio"
    EXTRACTING_SUBTITLES = "extracting_subtitles"
    TRANSCODING = "transcoding"
    READY = "ready"
    ERROR = "error"


# Position of each phase in the forward order
PHASE_ORDER: dict[JobPhase, int] = {
    JobPhase.QUEUED: 0,
    JobPhase.DOWNLOADING: 1,
    JobPhase.PROBING: 2,
    JobPhase.EXTRACTING_AUDIO: 3,
    JobPhase.TRANSCODING: 3,
    JobPhase.EXTRACTING_SUBTITLES: 4,
    JobPhase.READY: 5,
    JobPhase.ERROR: 5,
}

TERMINAL_PHASES = frozenset({JobPhase.READY, JobPhase.ERROR})

# Phases each kind may pass through
KIND_PHASES: dict[JobKind, frozenset] = {
    JobKind.EXTRACT: frozenset({
        JobPhase.QUEUED,
        JobPhase.DOWNLOADING,
        JobPhase.PROBING,
        JobPhase.EXTRACTING_AUDIO,
        JobPhase.EXTRACTING_SUBTITLES,
        JobPhase.READY,
        JobPhase.ERROR,
    }),
    JobKind.TRANSCODE: frozenset({
        JobPhase.QUEUED,
        JobPhase.DOWNLOADING,
        JobPhase.TRANSCODING,
        JobPhase.READY,
        JobPhase.ERROR,
    }),
}


class JobStateError(Exception):
    """An illegal or regressing state transition was attempted."""
    pass


class JobFailedError(Exception):
    """A fatal pipeline error; the message is shown to the host."""
    pass


@dataclass(frozen=True)
class JobState:
    """A phase plus its per-item payload.

    ``index``/``total`` locate the track being worked on during the
    extracting phases; ``quality`` names the variant while transcoding.
    """
    phase: JobPhase
    index: int = 0
    total: int = 0
    quality: Optional[str] = None

    @classmethod
    def queued(cls) -> "JobState":
        return cls(JobPhase.QUEUED)

    @classmethod
    def downloading(cls) -> "JobState":
        return cls(JobPhase.DOWNLOADING)

    @classmethod
    def probing(cls) -> "JobState":
        return cls(JobPhase.PROBING)

    @classmethod
    def extracting_audio(cls, index: int, total: int) -> "JobState":
        return cls(JobPhase.EXTRACTING_AUDIO, index=index, total=total)

    @classmethod
    def extracting_subtitles(cls, index: int, total: int) -> "JobState":
        return cls(JobPhase.EXTRACTING_SUBTITLES, index=index, total=total)

    @classmethod
    def transcoding(cls, quality: str, index: int, total: int) -> "JobState":
        return cls(JobPhase.TRANSCODING, index=index, total=total, quality=quality)

    @classmethod
    def ready(cls) -> "JobState":
        return cls(JobPhase.READY)

    @classmethod
    def error(cls) -> "JobState":
        return cls(JobPhase.ERROR)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def label(self) -> str:
        """Status string shown to pollers, e.g. ``extracting_audio[0/2]``."""
        if self.phase in (JobPhase.EXTRACTING_AUDIO, JobPhase.EXTRACTING_SUBTITLES):
            return f"{self.phase.value}[{self.index}/{self.total}]"
        if self.phase == JobPhase.TRANSCODING:
            return f"{self.phase.value}_{self.quality}"
        return self.phase.value

    def rank(self) -> tuple[int, int]:
        return (PHASE_ORDER[self.phase], self.index)

    def can_transition_to(self, new: "JobState") -> bool:
        """Whether moving from this state to ``new`` keeps the order."""
        if self.is_terminal:
            return False
        if new.phase == JobPhase.ERROR:
            return True
        return new.rank() >= self.rank()


@dataclass
class Job:
    """One unit of processing for a (media id, kind) pair."""
    kind: JobKind
    media_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    state: JobState = field(default_factory=JobState.queued)
    progress: int = 0
    current_item: Optional[str] = None
    error: Optional[str] = None
    # Artifacts dropped along the way, reported to pollers
    skipped: list[dict] = field(default_factory=list)
    variants: list[dict] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def key(self) -> str:
        return job_key(self.kind, self.media_id)

    @property
    def status(self) -> str:
        return self.state.label

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def correlation_id(self) -> str:
        """Log correlation id joining every line of one run."""
        return f"{self.kind.value}:{self.run_id}:{self.media_id}"

    @property
    def qualities(self) -> list[str]:
        return list(self.payload.get("qualities", []))

    def transition(self, new: JobState) -> None:
        """Move to ``new``.

        Raises:
            JobStateError: If the phase does not belong to this kind or the
                move would regress or leave a terminal state
        """
        if new.phase not in KIND_PHASES[self.kind]:
            raise JobStateError(f"{new.label} is not a {self.kind.value} state")
        if not self.state.can_transition_to(new):
            raise JobStateError(f"Illegal transition {self.state.label} -> {new.label}")
        self.state = new

    def advance_progress(self, percent: float) -> int:
        """Raise progress to ``percent`` (clamped to 0..100); never lowers it."""
        value = max(0, min(100, int(round(percent))))
        if value > self.progress:
            self.progress = value
        return self.progress


def job_key(kind: JobKind, media_id: str) -> str:
    """Dedup key; transcode keys live in their own namespace."""
    if kind == JobKind.TRANSCODE:
        return f"transcode:{media_id}"
    return media_id
