"""
OpenAI event classifier — one chat completion per post, JSON verdict out.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

import openai

from event_watch.config import OPENAI_MODEL
from event_watch.errors import MalformedResponse, RateLimited, ServiceUnavailable
from event_watch.pipeline.base import Classifier, ClassificationVerdict
from event_watch.services.retry import is_rate_limited

logger = logging.getLogger('services.openai')

EVENT_TYPES = ('conference', 'seminar', 'workshop', 'other')

SYSTEM_PROMPT = """You review Instagram posts and decide whether a post announces a \
professional or educational event: a conference, seminar, workshop, talk, \
webinar or similar gathering with a date, a venue or a speaker. \
Regular weekly religious services and ordinary worship gatherings are NOT events.

Respond in JSON:
{
  "isEvent": true/false,
  "confidenceScore": 0-100,
  "eventType": "conference" | "seminar" | "workshop" | "other",
  "eventDetails": {
    "title": "event title if mentioned",
    "date": "date if mentioned",
    "location": "venue or city if mentioned",
    "speaker": "speaker names if mentioned"
  }
}"""

_JSON_OBJECT = re.compile(r'\{.*\}', re.DOTALL)


def _first(data: Dict[str, Any], *names):
    for name in names:
        if name in data:
            return data[name]
    return None


def parse_verdict(raw: Optional[str]) -> ClassificationVerdict:
    """
    Strictly parse the model reply.

    is_event must be a boolean and confidence a number in [0, 100]; anything
    else raises MalformedResponse.
    """
    if not raw or not raw.strip():
        raise MalformedResponse('empty classifier response', raw)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(raw)
        if not match:
            raise MalformedResponse('classifier response is not JSON', raw)
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise MalformedResponse(f'classifier response is not JSON: {e}', raw) from e

    if not isinstance(data, dict):
        raise MalformedResponse('classifier response is not a JSON object', raw)

    is_event = _first(data, 'isEvent', 'is_event')
    if not isinstance(is_event, bool):
        raise MalformedResponse(f'isEvent must be a boolean, got {is_event!r}', raw)

    score = _first(data, 'confidenceScore', 'confidence_score')
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise MalformedResponse(f'confidenceScore must be a number, got {score!r}', raw)
    if not 0 <= score <= 100:
        raise MalformedResponse(f'confidenceScore out of range: {score}', raw)

    event_type = _first(data, 'eventType', 'event_type')
    if event_type is not None:
        event_type = str(event_type).lower()
        if event_type not in EVENT_TYPES:
            event_type = 'other'

    details = _first(data, 'eventDetails', 'event_details') or {}
    if not isinstance(details, dict):
        details = {'raw': details}

    return ClassificationVerdict(
        is_event=is_event,
        confidence_score=float(score),
        event_type=event_type,
        event_details=details,
    )


class OpenAIEventClassifier(Classifier):
    """
    Usage:
        classifier = OpenAIEventClassifier(openai_client)
        verdict = classifier.classify(caption, post_url, image_url)
    """

    def __init__(self, client, model: str = OPENAI_MODEL, include_image: bool = False,
                 max_tokens: int = 500):
        self.client = client
        self.model = model
        self.include_image = include_image
        self.max_tokens = max_tokens

    def _messages(self, caption, post_url, image_url):
        text = f"Post URL: {post_url}\n\nCaption:\n{caption or '(no caption)'}"
        if self.include_image and image_url:
            user_content = [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        else:
            user_content = text
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]

    def classify(self, caption: str, post_url: str, image_url: Optional[str] = None) -> ClassificationVerdict:
        if self.client is None:
            raise ServiceUnavailable('OpenAI client is not configured')

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(caption, post_url, image_url),
                response_format={"type": "json_object"},
                temperature=0,
                max_tokens=self.max_tokens,
            )
        except openai.RateLimitError as e:
            raise RateLimited(f'OpenAI rate limit: {e}') from e
        except openai.OpenAIError as e:
            if is_rate_limited(e):
                raise RateLimited(f'OpenAI rate limit: {e}') from e
            raise ServiceUnavailable(f'OpenAI request failed: {e}') from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise MalformedResponse('OpenAI response has no message content') from e

        verdict = parse_verdict(content)
        logger.debug("Verdict for %s: event=%s confidence=%.0f",
                     post_url, verdict.is_event, verdict.confidence_score)
        return verdict
