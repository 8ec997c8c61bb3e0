"""
Turn raw model output into a validated StructuredRecommendation.

``parse`` never raises: anything that fails to decode or validate is replaced
by the canonical fallback recommendation.
"""
import logging

from pydantic import ValidationError

from .errors import MalformedModelOutput
from .json_utils import extract_json_object
from .models import StructuredRecommendation
from .safety import DISCLAIMER

logger = logging.getLogger(__name__)

# wire name -> attribute name; models sometimes answer in snake_case
REQUIRED_FIELDS = {
    "summary": "summary",
    "symptoms": "symptoms",
    "causes": "causes",
    "treatmentSteps": "treatment_steps",
    "preventionSteps": "prevention_steps",
}


def fallback_recommendation() -> StructuredRecommendation:
    """Generic, safe recommendation used whenever model output is unusable."""
    return StructuredRecommendation(
        summary=(
            "Based on the analysis, this may indicate a citrus health issue "
            "that requires further assessment."
        ),
        symptoms=[
            "Observe leaf discoloration, spots, or unusual growth patterns",
            "Check for lesions or abnormal textures",
            "Note any yellowing or wilting",
        ],
        causes=[
            "Various environmental factors",
            "Possible pathogenic infection",
        ],
        treatment_steps=[
            "Remove and dispose of severely affected leaves properly",
            "Improve air circulation around the plant",
            "Ensure proper watering (not too wet/dry)",
            "Consult local DA office for specific treatment recommendations",
        ],
        prevention_steps=[
            "Maintain proper plant spacing",
            "Regular monitoring and inspection",
            "Practice good sanitation (clean tools, remove debris)",
        ],
        when_to_escalate=[
            "If symptoms spread rapidly to other plants",
            "If conventional treatments show no improvement after 2 weeks",
        ],
        disclaimer=DISCLAIMER,
    )


def _missing_fields(data: dict) -> list[str]:
    """Required fields that are absent, empty strings or empty lists."""
    missing = []
    for name, attr in REQUIRED_FIELDS.items():
        value = data.get(name, data.get(attr))
        if value is None or (isinstance(value, (str, list)) and not value):
            missing.append(name)
    return missing


def parse(raw_text: str) -> StructuredRecommendation:
    """Extract a StructuredRecommendation from model output, or fall back."""
    try:
        data = extract_json_object(raw_text)
        missing = _missing_fields(data)
        if missing:
            raise MalformedModelOutput(f"Missing required fields: {', '.join(missing)}")
        # Whatever the model wrote as a disclaimer is replaced below
        data.pop("disclaimer", None)
        recommendation = StructuredRecommendation.model_validate(data)
    except (MalformedModelOutput, ValidationError, ValueError) as e:
        logger.error(
            f"Failed to parse recommendation response: {e}. "
            f"Content: {(raw_text or '')[:200]!r}"
        )
        return fallback_recommendation()

    return recommendation.model_copy(update={"disclaimer": DISCLAIMER})
