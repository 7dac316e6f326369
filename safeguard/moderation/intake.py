"""
Submission intake: validate, normalize, and open a review.
"""
import base64
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Union

from pydantic import ValidationError as PydanticValidationError

from safeguard.core.config import ModerationConfig
from safeguard.core.logging import get_logger
from safeguard.moderation.errors import ValidationError
from safeguard.moderation.models import ContentSubmission, utcnow

logger = get_logger("moderation.intake")


def generate_review_id() -> str:
    """
    Generate a review ID.

    Random-derived so concurrent generation never collides; the
    millisecond prefix only keeps IDs roughly sortable.
    """
    return f"mod_{int(time.time() * 1000)}_{uuid.uuid4().hex[:16]}"


@dataclass
class IntakeTicket:
    """An accepted submission with its review ID and processing clock."""
    submission: ContentSubmission
    review_id: str
    started_at: datetime = field(default_factory=utcnow)
    _clock_start: float = field(default_factory=time.perf_counter, repr=False)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._clock_start) * 1000.0


class SubmissionIntake:
    """Validates incoming submissions. Has no side effects beyond the ticket."""

    def __init__(self, config: ModerationConfig):
        self.config = config

    def accept(self, raw: Union[ContentSubmission, Mapping[str, Any]]) -> IntakeTicket:
        """
        Validate and normalize a submission.

        Raises:
            ValidationError: malformed payload, missing content, bad base64 or text too long
        """
        submission = self._parse(raw)
        submission = self._normalize(submission)

        content = submission.content
        if not content.has_text and not content.has_image:
            raise ValidationError(
                "Submission must include text or an image",
                errors=[{"loc": ["content"], "msg": "no text or image provided"}],
            )

        if content.image_base64 and not is_base64(content.image_base64):
            raise ValidationError(
                "Inline image is not valid base64",
                errors=[{"loc": ["content", "image_base64"], "msg": "invalid base64"}],
            )

        if content.text and len(content.text) > self.config.max_text_length:
            raise ValidationError(
                f"Text exceeds {self.config.max_text_length} characters",
                errors=[{"loc": ["content", "text"], "msg": "text too long"}],
            )

        ticket = IntakeTicket(submission=submission, review_id=generate_review_id())
        logger.info(
            f"Accepted {submission.type.value} {submission.content_id} "
            f"from user {submission.user_id} as {ticket.review_id}"
        )
        return ticket

    def _parse(self, raw: Union[ContentSubmission, Mapping[str, Any]]) -> ContentSubmission:
        if isinstance(raw, ContentSubmission):
            return raw
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Unsupported submission type: {type(raw).__name__}")
        try:
            return ContentSubmission.model_validate(dict(raw))
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed submission",
                errors=[
                    {"loc": list(err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            ) from e

    def _normalize(self, submission: ContentSubmission) -> ContentSubmission:
        content = submission.content
        text = content.text.strip() if content.text else None
        normalized = content.model_copy(update={
            "text": text or None,
            "image_url": content.image_url or None,
            "image_base64": content.image_base64 or None,
        })
        return submission.model_copy(update={"content": normalized})


def is_base64(value: str) -> bool:
    try:
        base64.b64decode(value, validate=True)
    except ValueError:
        return False
    return True
