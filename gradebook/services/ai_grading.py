"""
AI grading of series-questionnaire submissions.

Builds the grading prompt, sends it through the chat-completion client and
validates the model's JSON reply. A reply that cannot be parsed into a
GradingResult raises UnparsableAIResponseError with the raw text attached;
no score is ever made up.
"""

import json
import logging
import re
from typing import Dict, Optional

from pydantic import ValidationError

from gradebook.errors import UnparsableAIResponseError
from gradebook.schemas.series import GradingResult, SeriesAnswer, SeriesGradingPayload
from gradebook.services.ai_client import ChatCompletionClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an objective educational evaluator. You grade students' answers "
    "to open questions fairly, consistently and constructively."
)

DEFAULT_GRADING_CRITERIA = (
    "Grade on completeness, accuracy and depth of the answers."
)
DEFAULT_GRADING_PROMPT = "Grade objectively and fairly."
NOT_ANSWERED = "not answered"

# CJK ideographs count one word each; everything else splits on whitespace
_WORD_RE = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff]|[^\s\u3400-\u4dbf\u4e00-\u9fff]+")
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def build_grading_prompt(payload: SeriesGradingPayload) -> str:
    questionnaire = payload.questionnaire
    answers: Dict[str, SeriesAnswer] = {a.question_id: a for a in payload.answers}

    prompt = f"""Please grade the following series questionnaire.

Questionnaire:
- Title: {questionnaire.title}
- Description: {questionnaire.description or 'none'}
- Maximum score: {questionnaire.max_score}

Grading criteria:
{questionnaire.ai_grading_criteria or DEFAULT_GRADING_CRITERIA}

Grading instructions:
{questionnaire.ai_grading_prompt or DEFAULT_GRADING_PROMPT}

Questions and student answers:
"""

    for index, question in enumerate(payload.questions, start=1):
        answer = answers.get(question.id)
        has_answer = answer is not None and answer.answer_text.strip() != ""
        if has_answer:
            answer_text = answer.answer_text
            word_count = answer.word_count if answer.word_count is not None else count_words(answer_text)
        else:
            answer_text = NOT_ANSWERED
            word_count = 0

        prompt += f"""
{index}. {question.title} [question_id: {question.id}]
   Question: {question.content}
   {'(required)' if question.required else '(optional)'}
   Student answer: {answer_text}
   Word count: {word_count}
"""

    prompt += f"""

Return the grading result as strict JSON only, with exactly this shape:
{{
  "overall_score": <total score between 0 and {questionnaire.max_score}>,
  "overall_feedback": "<overall feedback>",
  "detailed_feedback": [
    {{
      "question_id": "<question id>",
      "score": <score for this question>,
      "feedback": "<feedback for this question>",
      "strengths": ["<strength>"],
      "improvements": ["<suggested improvement>"]
    }}
  ],
  "criteria_scores": {{
    "completeness": <score>,
    "accuracy": <score>,
    "depth": <score>
  }},
  "suggestions": ["<overall suggestion>"]
}}"""

    return prompt


def parse_grading_response(raw: str) -> GradingResult:
    """
    Parse the model's text into a GradingResult.

    A single surrounding markdown code fence is tolerated. Anything else that
    is not the expected JSON object raises UnparsableAIResponseError.
    """
    text = raw.strip()
    fenced = _CODE_FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except ValueError as e:
        raise UnparsableAIResponseError(
            "AI grading response is not valid JSON", raw_response=raw
        ) from e

    if not isinstance(data, dict):
        raise UnparsableAIResponseError(
            "AI grading response is not a JSON object", raw_response=raw
        )

    try:
        return GradingResult.model_validate(data)
    except ValidationError as e:
        raise UnparsableAIResponseError(
            f"AI grading response is missing required fields: {e.error_count()} error(s)",
            raw_response=raw,
        ) from e


async def grade_series_questionnaire(
    payload: SeriesGradingPayload,
    client: ChatCompletionClient,
) -> GradingResult:
    """
    Grade one submission with the AI model.

    Raises TransientGradingError once retries are exhausted and
    PermanentGradingError (including UnparsableAIResponseError) otherwise.
    """
    prompt = build_grading_prompt(payload)
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]

    logger.info(
        "Requesting AI grading for '%s' (%d questions, %d answers)",
        payload.questionnaire.title,
        len(payload.questions),
        len(payload.answers),
    )
    # Low temperature and bounded max_tokens come from the client defaults
    raw = await client.complete(messages)

    try:
        result = parse_grading_response(raw)
    except UnparsableAIResponseError:
        logger.error("Unparsable AI grading response: %r", raw[:500])
        raise

    max_score = payload.questionnaire.max_score
    if result.overall_score > max_score:
        raise UnparsableAIResponseError(
            f"AI overall_score {result.overall_score} exceeds max score {max_score}",
            raw_response=raw,
        )

    logger.info("AI grading finished: %s/%s", result.overall_score, max_score)
    return result
