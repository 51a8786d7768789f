"""
Prompt templates for insight generation

Each insight category has one fixed instructional template. The output
section names are shared with app.services.insight_parser, so renaming a
heading here changes what the parser looks for.
"""
import json
from typing import Any, Optional

from app.models.insight import InsightType


# Heading names the backend is asked to produce, in output order
SECTION_TITLE = "Title"
SECTION_SUMMARY = "Summary"
SECTION_PRIORITY = "Priority"
SECTION_METRICS = "Key Metrics"
SECTION_ANALYSIS = "Analysis"
SECTION_RECOMMENDATIONS = "Recommendations"
SECTION_VISUALIZATIONS = "Visualization Suggestions"

OUTPUT_SECTIONS = (
    SECTION_TITLE,
    SECTION_SUMMARY,
    SECTION_PRIORITY,
    SECTION_METRICS,
    SECTION_ANALYSIS,
    SECTION_RECOMMENDATIONS,
    SECTION_VISUALIZATIONS,
)


_TEMPLATES = {
    InsightType.PERFORMANCE: {
        "role": "an AI business analyst for an e-commerce seller",
        "task": "Analyze this performance data and generate actionable insights",
        "directives": [
            "Identify key trends in sales, revenue, and profitability",
            "Compare performance against previous periods",
            "Highlight top and bottom performing products",
            "Identify seasonality or patterns in the data",
            "Generate specific, actionable recommendations to improve performance",
        ],
        "subject": "insight",
        "finding": "key finding",
        "impact": "business impact",
        "metrics": "important metrics with values, change percentages, and direction (up/down/stable)",
        "analysis": "the data patterns discovered",
        "actions": "the business should take",
    },
    InsightType.COMPETITIVE: {
        "role": "an AI competitive analyst for an e-commerce seller",
        "task": "Analyze this marketplace data and generate actionable insights",
        "directives": [
            "Identify key competitive positioning for our products",
            "Analyze Buy Box win rates and price competitiveness",
            "Highlight threats from competitors and market positioning",
            "Identify pricing gaps and competitive advantages/disadvantages",
            "Generate specific, actionable recommendations to improve competitive position",
        ],
        "subject": "insight",
        "finding": "key competitive finding",
        "impact": "competitive impact",
        "metrics": "important competitive metrics with values and context",
        "analysis": "competitive positioning discovered",
        "actions": "to improve competitiveness",
    },
    InsightType.OPPORTUNITY: {
        "role": "an AI business strategist for an e-commerce seller",
        "task": "Analyze this data and identify business opportunities",
        "directives": [
            "Identify untapped markets or product categories",
            "Highlight pricing optimization opportunities",
            "Find inventory stocking optimization possibilities",
            "Discover cross-selling or bundle opportunities",
            "Generate specific, actionable recommendations to capitalize on these opportunities",
        ],
        "subject": "opportunity insight",
        "finding": "key opportunity",
        "impact": "potential impact",
        "metrics": "important metrics that highlight the opportunity",
        "analysis": "the opportunity and its potential value",
        "actions": "to capture this opportunity",
    },
    InsightType.RISK: {
        "role": "an AI risk analyst for an e-commerce seller",
        "task": "Analyze this data and identify business risks",
        "directives": [
            "Identify potential stockout or inventory issues",
            "Highlight price erosion or margin compression risks",
            "Find potential quality or customer satisfaction issues",
            "Discover competitive threats or market shifts",
            "Generate specific, actionable recommendations to mitigate these risks",
        ],
        "subject": "risk insight",
        "finding": "key risk",
        "impact": "risk severity",
        "metrics": "important metrics that highlight the risk",
        "analysis": "the risk and its potential impact",
        "actions": "to mitigate this risk",
    },
}


def serialize_context(context_data: Any) -> str:
    """JSON-encode gathered data for embedding in a prompt"""
    return json.dumps(context_data, indent=2, default=str)


def _render_template(insight_type: InsightType, data_string: str) -> str:
    t = _TEMPLATES[insight_type]
    directives = "\n".join(f"{i}. {d}" for i, d in enumerate(t["directives"], start=1))

    return f"""You're {t['role']}. {t['task']}:

{directives}

Format your response with these sections:
- {SECTION_TITLE}: A specific, descriptive title for this {t['subject']}
- {SECTION_SUMMARY}: A concise 2-3 sentence summary of the {t['finding']}
- {SECTION_PRIORITY}: Either "LOW", "MEDIUM", "HIGH", or "CRITICAL" based on {t['impact']}
- {SECTION_METRICS}: List of 3-5 {t['metrics']}
- {SECTION_ANALYSIS}: Detailed explanation of {t['analysis']}
- {SECTION_RECOMMENDATIONS}: 2-4 specific actions {t['actions']}, with priority levels for each
- {SECTION_VISUALIZATIONS}: 1-2 chart types that would best represent this data

DATA:
{data_string}"""


def build_prompt(
    insight_type: InsightType,
    context_data: Any,
    custom_prompt: Optional[str] = None
) -> str:
    """
    Build the analysis prompt for one insight category.

    Args:
        insight_type: Insight category
        context_data: Gathered data, serialized as JSON into the prompt
        custom_prompt: Caller-supplied instructions replacing the template

    Returns:
        Prompt text
    """
    data_string = serialize_context(context_data)

    if custom_prompt:
        return f"{custom_prompt}\n\nAnalyze the following data:\n{data_string}"

    return _render_template(InsightType(insight_type), data_string)
