"""Structured treatment descriptions and their legacy free-text encoding"""

from dataclasses import dataclass, field
from typing import List, Optional

NOTE_SEPARATOR = " - "
TREATMENT_SEPARATOR = ", "
DEFAULT_TREATMENT_TEXT = "Service Payment"


@dataclass
class TreatmentNote:
    """
    Selected treatment types plus an optional free-form note.

    Stored as "Scaling, Filling - bring x-rays". Parsing splits on the first
    " - ", so a treatment name containing that separator is misread; this is
    the stored format and is kept as-is.
    """

    treatment_types: List[str] = field(default_factory=list)
    note: Optional[str] = None

    def encode(self) -> str:
        treatments = TREATMENT_SEPARATOR.join(t.strip() for t in self.treatment_types if t.strip())
        note = (self.note or "").strip()
        if treatments and note:
            return f"{treatments}{NOTE_SEPARATOR}{note}"
        return treatments or note

    @property
    def treatment_text(self) -> str:
        return TREATMENT_SEPARATOR.join(self.treatment_types) or DEFAULT_TREATMENT_TEXT

    @classmethod
    def parse(cls, text: Optional[str]) -> "TreatmentNote":
        if not text:
            return cls()
        head, sep, tail = text.partition(NOTE_SEPARATOR)
        treatments = [t.strip() for t in head.split(",") if t.strip()]
        return cls(treatment_types=treatments, note=tail if sep else None)


def split_description(text: Optional[str]) -> tuple[str, Optional[str]]:
    """
    Split a payment description into (treatment text, additional notes).

    The treatment text is everything before the first " - " and falls back
    to "Service Payment"; the remainder (rejoined) is the notes.
    """
    if not text:
        return DEFAULT_TREATMENT_TEXT, None
    head, sep, tail = text.partition(NOTE_SEPARATOR)
    return head or DEFAULT_TREATMENT_TEXT, (tail if sep else None)


def treatment_parts(
    treatment_types: Optional[List[str]],
    note: Optional[str],
    legacy_text: Optional[str] = None,
) -> tuple[str, Optional[str]]:
    """
    (treatment text, notes) for display.

    Structured fields win when present; rows written before they existed
    fall back to splitting the legacy description text.
    """
    if treatment_types or note:
        return TreatmentNote(list(treatment_types or []), note).treatment_text, note or None
    return split_description(legacy_text)


def payment_treatment(payment, plan=None) -> tuple[str, Optional[str]]:
    """(treatment text, notes) for a payment, using its plan's treatment when the payment records none"""
    if payment.treatment_types or payment.treatment_note or payment.description:
        return treatment_parts(payment.treatment_types, payment.treatment_note, payment.description)
    if plan is not None:
        return treatment_parts(plan.treatment_types, plan.treatment_note, plan.notes)
    return split_description(None)
