from types import SimpleNamespace

from formrelay.services.mail_providers import MessageRef
from formrelay.services.reply_matching import (
    extract_answers,
    is_likely_reply,
    map_answers_to_fields,
    sender_address,
)
from formrelay.services.form_template_service import DEFAULT_TEMPLATE_FIELDS

FORM = SimpleNamespace(candidate_email="jane@example.com", reply_subject="Complete Your Information")


def _message(sender: str, subject: str) -> MessageRef:
    return MessageRef(id="m1", subject=subject, sender=sender, received_at=None)


def test_sender_address_parses_display_names():
    assert sender_address('"Jane Doe" <Jane@Example.com>') == "jane@example.com"
    assert sender_address("") is None


def test_reply_needs_sender_and_subject():
    assert is_likely_reply(
        _message("Jane Doe <jane@example.com>", "RE: Complete your information - Action Required"),
        FORM,
    )
    assert not is_likely_reply(_message("jane@example.com", "Lunch on Friday?"), FORM)
    assert not is_likely_reply(
        _message("someone@example.com", "RE: Complete Your Information"), FORM
    )


def test_extract_answers_prefers_embedded_json():
    body = 'Here you go:\n{"name": "Jane", "skills": ["Go", "SQL"]}\nThanks!\nName: ignored'

    assert extract_answers(body) == {"name": "Jane", "skills": ["Go", "SQL"]}


def test_extract_answers_from_key_value_lines():
    body = "\n".join(
        [
            "Hi,",
            "Full Name: Jane Doe",
            "Email: jane@example.com",
            "LinkedIn Profile: https://linkedin.com/in/jane",
            "https://example.com/portfolio",
            "",
            "On Mon, Mar 2, 2026 at 9:00 AM Recruiter <recruiter@agency.com> wrote:",
            "> Full Name: ...",
        ]
    )

    assert extract_answers(body) == {
        "full_name": "Jane Doe",
        "email": "jane@example.com",
        "linkedin_profile": "https://linkedin.com/in/jane",
    }


def test_extract_answers_skips_unfilled_invitation_lines():
    body = "\n".join(
        [
            "Name: Jane Doe",
            "",
            "Please take a few minutes to complete your information for our records:",
            "Full Name: ...",
            "Email: ...",
            "Phone: …",
        ]
    )

    assert extract_answers(body) == {"name": "Jane Doe"}
    assert extract_answers("Full Name: ...\nEmail: ...") is None


def test_extract_answers_without_structure():
    assert extract_answers("Thanks, I will fill this out tomorrow.") is None
    assert extract_answers("") is None


def test_map_answers_uses_ids_and_labels():
    extracted = {
        "full_name": "Jane Doe",
        "email": "jane@example.com",
        "visa_status": "green card",
        "years_of_experience": "10+ Years",
        "hobby": "chess",
    }

    mapped = map_answers_to_fields(extracted, DEFAULT_TEMPLATE_FIELDS)

    assert mapped == {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "visa": "Green Card",
        "experience": "10+ years",
        "hobby": "chess",
    }


def test_map_answers_splits_checkbox_text():
    fields = [
        {"id": "langs", "label": "Languages", "type": "checkbox", "options": ["Go", "Python"]},
    ]

    assert map_answers_to_fields({"languages": "python, go"}, fields) == {"langs": ["Python", "Go"]}
