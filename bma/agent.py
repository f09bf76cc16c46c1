"""Pydantic AI agents for listing extraction and BMA analysis."""

import json
import logging
from collections.abc import Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, UnexpectedModelBehavior, UserError
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from .config import settings
from .errors import EmptyResponseError, MalformedResponseError, ProviderUnavailableError
from .schemas import DetailedAnalysis, PropertyDetails

logger = logging.getLogger(__name__)

PROPERTY_SCHEMA = """{
    "address": "string",
    "price": number,
    "bedrooms": number,
    "bathrooms": number,
    "squareFootage": number,
    "yearBuilt": number,
    "propertyType": "string",
    "lotSize": "string",
    "mlsNumber": "string",
    "daysOnMarket": number,
    "lastPriceChange": number,
    "description": "string"
}"""

ANALYSIS_SCHEMA = """{
    "primaryPropertyDetails": <property object>,
    "comparisonDetails": [<property object>, ...],
    "priceAnalysis": "string",
    "featureComparison": [
        {
            "feature": "string",
            "primaryValue": "string",
            "comparison": [
                {
                    "address": "string",
                    "value": "string"
                }
            ],
            "analysis": "string"
        }
    ],
    "marketTrends": "string",
    "recommendation": "string"
}"""


extraction_agent = Agent(
    settings.extraction_model,
    system_prompt=f"""Extract the following property details from the given real estate listing text.
Return ONLY a JSON object with these exact fields (use null for missing values):
{PROPERTY_SCHEMA}
""",
    retries=0,
    defer_model_check=True,
)

analysis_agent = Agent(
    settings.analysis_model,
    system_prompt="""You are a real estate broker preparing a Broker Market Analysis (BMA).
You compare one primary property against a set of comparison properties and
answer with a single JSON object, without commentary.""",
    retries=0,
    defer_model_check=True,
)


# =============================================================================
# Prompt formatting and reply parsing
# =============================================================================


def format_property_details(details: PropertyDetails) -> str:
    """Render a property as indented camelCase JSON."""
    return details.model_dump_json(by_alias=True, indent=2)


def format_comparison_properties(properties: Sequence[PropertyDetails]) -> str:
    """Render comparison properties as numbered blocks."""
    blocks = []
    for i, prop in enumerate(properties, start=1):
        blocks.append(f"Comparison Property {i}:\n{format_property_details(prop)}\n\n")
    return "".join(blocks)


def build_extraction_prompt(content: str) -> str:
    return f"Here is the listing text:\n{content}"


def build_analysis_prompt(
    primary: PropertyDetails,
    comparisons: Sequence[PropertyDetails],
    instructions: str,
) -> str:
    return f"""Generate a detailed BMA (Broker Market Analysis) report comparing the following properties:

Primary Property:
{format_property_details(primary)}

Comparison Properties:
{format_comparison_properties(comparisons)}

Additional Instructions:
{instructions}

Please provide a comprehensive analysis including:
1. Price analysis comparing the primary property to the comparisons
2. Detailed feature comparison (bedrooms, bathrooms, square footage, etc.)
3. Market trends and context
4. Final recommendation

A property object has this structure:
{PROPERTY_SCHEMA}

Format the response as a JSON object with the following structure:
{ANALYSIS_SCHEMA}"""


def extract_json_object(reply: str) -> dict:
    """Parse the substring between the first '{' and the last '}' of a reply."""
    if not reply or not reply.strip():
        raise EmptyResponseError("No content generated")

    start = reply.find("{")
    end = reply.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise MalformedResponseError("Invalid response format: no JSON object found")

    try:
        data = json.loads(reply[start : end + 1])
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Failed to parse JSON response: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError("Invalid response format: expected a JSON object")
    return data


async def _complete(
    agent: Agent,
    prompt: str,
    model: Model | str | None,
    timeout: float | None,
) -> str:
    """Run an agent once and return its text reply, mapping provider failures."""
    model_settings: ModelSettings | None = {"timeout": timeout} if timeout else None
    try:
        result = await agent.run(prompt, model=model, model_settings=model_settings)
    except UnexpectedModelBehavior as e:
        raise EmptyResponseError(f"No content generated: {e}") from e
    except (AgentRunError, UserError, httpx.HTTPError) as e:
        raise ProviderUnavailableError(f"Failed to generate content: {e}") from e
    return result.output


# =============================================================================
# Clients
# =============================================================================


class PropertyExtractor:
    """Turns unstructured listing text into PropertyDetails.

    No caching: every call reaches the provider.
    """

    def __init__(self, model: Model | str | None = None, timeout: float | None = None):
        self.model = model
        self.timeout = timeout if timeout is not None else settings.llm_timeout

    async def extract(self, content: str) -> PropertyDetails:
        reply = await _complete(
            extraction_agent, build_extraction_prompt(content), self.model, self.timeout
        )
        data = extract_json_object(reply)
        try:
            details = PropertyDetails.model_validate(data)
        except PydanticValidationError as e:
            raise MalformedResponseError(f"Failed to parse JSON response: {e}") from e

        logger.debug(f"Extracted property details for {details.address!r}")
        return details


class AnalysisGenerator:
    """Produces the multi-section DetailedAnalysis for a BMA report."""

    def __init__(self, model: Model | str | None = None, timeout: float | None = None):
        self.model = model
        self.timeout = timeout if timeout is not None else settings.llm_timeout

    async def generate(
        self,
        primary: PropertyDetails,
        comparisons: Sequence[PropertyDetails],
        instructions: str,
    ) -> DetailedAnalysis:
        prompt = build_analysis_prompt(primary, comparisons, instructions)
        reply = await _complete(analysis_agent, prompt, self.model, self.timeout)
        data = extract_json_object(reply)
        data.pop("primaryPropertyDetails", None)
        data.pop("comparisonDetails", None)
        try:
            analysis = DetailedAnalysis.model_validate(data)
        except PydanticValidationError as e:
            raise MalformedResponseError(f"Failed to parse JSON response: {e}") from e

        # Only the analysis text comes from the model; the facts are ours.
        analysis.primary_property_details = primary
        analysis.comparison_details = list(comparisons)
        return analysis
