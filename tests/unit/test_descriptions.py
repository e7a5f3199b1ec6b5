"""Unit tests for treatment description encoding"""

from types import SimpleNamespace

from clinic_ledger.domain.descriptions import TreatmentNote, payment_treatment, split_description, treatment_parts


def test_encode_treatments_and_note():
    note = TreatmentNote(["Scaling", "Filling"], "bring x-rays")
    assert note.encode() == "Scaling, Filling - bring x-rays"


def test_encode_partial():
    assert TreatmentNote(["Extraction"]).encode() == "Extraction"
    assert TreatmentNote([], "follow-up visit").encode() == "follow-up visit"
    assert TreatmentNote().encode() == ""


def test_parse_round_trip():
    note = TreatmentNote.parse("Scaling, Filling - bring x-rays")
    assert note.treatment_types == ["Scaling", "Filling"]
    assert note.note == "bring x-rays"
    assert TreatmentNote.parse(None) == TreatmentNote()


def test_treatment_text_default():
    assert TreatmentNote().treatment_text == "Service Payment"


def test_split_description():
    assert split_description("Braces - adjust wire - next month") == ("Braces", "adjust wire - next month")
    assert split_description("Whitening") == ("Whitening", None)
    assert split_description(None) == ("Service Payment", None)
    assert split_description(" - only notes") == ("Service Payment", "only notes")


def test_structured_fields_keep_separator_in_note():
    assert treatment_parts(["Braces"], "adjust - wire") == ("Braces", "adjust - wire")
    assert treatment_parts([], "just a note") == ("Service Payment", "just a note")


def test_legacy_text_used_without_structured_fields():
    assert treatment_parts(None, None, "Whitening - touch up") == ("Whitening", "touch up")


def test_payment_falls_back_to_plan_treatment():
    payment = SimpleNamespace(treatment_types=None, treatment_note=None, description=None)
    plan = SimpleNamespace(treatment_types=["Implant"], treatment_note=None, notes="Implant")
    assert payment_treatment(payment, plan) == ("Implant", None)
    assert payment_treatment(payment) == ("Service Payment", None)

    payment.description = "Scaling"
    assert payment_treatment(payment, plan) == ("Scaling", None)
