"""
Test submission intake and review ID generation.
"""
import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from safeguard.moderation.errors import ValidationError
from safeguard.moderation.intake import SubmissionIntake, generate_review_id
from safeguard.moderation.models import ContentType, VerificationLevel

from tests.conftest import make_submission


def test_accepts_text_submission(config):
    ticket = SubmissionIntake(config).accept(make_submission(text="  hello there  "))
    assert ticket.submission.content.text == "hello there"
    assert ticket.submission.type == ContentType.MESSAGE
    assert re.match(r"^mod_\d+_[0-9a-f]{16}$", ticket.review_id)


def test_user_context_defaults(config):
    """Test that omitted user context fields get conservative defaults."""
    payload = make_submission(text="hi")
    payload["user_context"] = {"account_age_hours": 5}
    ticket = SubmissionIntake(config).accept(payload)
    ctx = ticket.submission.user_context
    assert ctx.verification_level == VerificationLevel.NONE
    assert ctx.report_history_count == 0
    assert ctx.trust_score == 50


def test_rejects_submission_without_text_or_image(config):
    """Test that whitespace-only text counts as no text."""
    with pytest.raises(ValidationError) as exc:
        SubmissionIntake(config).accept(make_submission(text="   "))
    assert exc.value.errors[0]["loc"] == ["content"]


def test_rejects_unknown_content_type(config):
    payload = make_submission(text="hi")
    payload["type"] = "video"
    with pytest.raises(ValidationError) as exc:
        SubmissionIntake(config).accept(payload)
    assert any("type" in err["loc"] for err in exc.value.errors)


def test_rejects_missing_user_context(config):
    payload = make_submission(text="hi")
    del payload["user_context"]
    with pytest.raises(ValidationError):
        SubmissionIntake(config).accept(payload)


def test_rejects_out_of_range_trust_score(config):
    with pytest.raises(ValidationError):
        SubmissionIntake(config).accept(make_submission(text="hi", trust_score=140))


def test_rejects_overlong_text(config):
    config = config.model_copy(update={"max_text_length": 10})
    with pytest.raises(ValidationError):
        SubmissionIntake(config).accept(make_submission(text="x" * 11))


def test_image_only_submission(config):
    ticket = SubmissionIntake(config).accept(
        make_submission(image_url="https://cdn.example.com/a.jpg", content_type="profile_photo")
    )
    assert ticket.submission.content.has_image
    assert not ticket.submission.content.has_text


def test_inline_base64_image_accepted(config):
    payload = make_submission(content_type="profile_photo")
    payload["content"]["image_base64"] = "aGVsbG8gd29ybGQ="
    ticket = SubmissionIntake(config).accept(payload)
    assert ticket.submission.content.has_image


@pytest.mark.parametrize("garbage", ["not base64!!", "aGVsbG8=x", "ünïcode"])
def test_rejects_invalid_inline_base64(config, garbage):
    payload = make_submission(content_type="profile_photo")
    payload["content"]["image_base64"] = garbage
    with pytest.raises(ValidationError) as exc:
        SubmissionIntake(config).accept(payload)
    assert exc.value.errors[0]["loc"] == ["content", "image_base64"]


def test_review_ids_unique_under_concurrency():
    """Test that 1000 concurrently generated review IDs never collide."""
    with ThreadPoolExecutor(max_workers=16) as pool:
        ids = list(pool.map(lambda _: generate_review_id(), range(1000)))
    assert len(set(ids)) == 1000
