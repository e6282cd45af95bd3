"""
Curriculum positions.

A run walks a fixed curriculum: Step 1 has five questions, Step 2 has thirty
sessions. A thread is addressed by exactly one position, so the position is a
tagged value (Step1 | Step2) rather than a pair of nullable numbers.
"""

from dataclasses import dataclass
from typing import Literal

STEP1_QUESTIONS = 5
STEP2_SESSIONS = 30


@dataclass(frozen=True)
class Step1:
    """A Step 1 question (1..5)."""

    question_no: int
    step: Literal[1] = 1

    def __post_init__(self) -> None:
        if not 1 <= self.question_no <= STEP1_QUESTIONS:
            raise ValueError(f"question_no must be in 1..{STEP1_QUESTIONS}, got {self.question_no}")

    def as_columns(self) -> dict:
        return {"step": 1, "question_no": self.question_no, "session_no": None}


@dataclass(frozen=True)
class Step2:
    """A Step 2 session (1..30)."""

    session_no: int
    step: Literal[2] = 2

    def __post_init__(self) -> None:
        if not 1 <= self.session_no <= STEP2_SESSIONS:
            raise ValueError(f"session_no must be in 1..{STEP2_SESSIONS}, got {self.session_no}")

    def as_columns(self) -> dict:
        return {"step": 2, "question_no": None, "session_no": self.session_no}


CurriculumPosition = Step1 | Step2

FINAL_POSITION: CurriculumPosition = Step2(STEP2_SESSIONS)


def position_from_columns(step: int, question_no: int | None, session_no: int | None) -> CurriculumPosition:
    """Rebuild a position from stored thread columns."""
    if step == 1 and question_no is not None and session_no is None:
        return Step1(question_no)
    if step == 2 and session_no is not None and question_no is None:
        return Step2(session_no)
    raise ValueError(f"invalid curriculum position: step={step} question_no={question_no} session_no={session_no}")


def next_position(max_question_no: int, max_session_no: int) -> CurriculumPosition | None:
    """
    Position that follows the highest ones already used in a run.

    Returns None when all thirty Step 2 sessions exist (the run is exhausted).
    """
    if max_question_no < STEP1_QUESTIONS:
        return Step1(max_question_no + 1)
    if max_session_no + 1 <= STEP2_SESSIONS:
        return Step2(max_session_no + 1)
    return None


def is_final(position: CurriculumPosition) -> bool:
    return position == FINAL_POSITION
