"""Prompt templates for quotation report generation.

Templates use Python ``.format()`` placeholders.  The model is asked to
answer in markdown, which the report writer turns into a ``.docx``.
"""
from __future__ import annotations

from app.quotations.entities import QuotationRequest

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = (
    "You are a senior software developer and project manager with deep "
    "knowledge of software pricing and delivery costs: engineering hours, "
    "licences, cloud services, legal permissions, hiring and operations."
)

# ---------------------------------------------------------------------------
# QUOTATION_REPORT
# ---------------------------------------------------------------------------

QUOTATION_REPORT = (
    "Generate a comprehensive software project quotation report based on the "
    "following details.  Structure the report professionally with clear "
    "sections (Introduction, Scope, Technology Stack Estimate, Feature "
    "Breakdown Estimate, Timeline Estimate, Cost Estimate, Assumptions, "
    "Simulation, Next Steps).\n"
    "\n"
    "**Project Name:** {name}\n"
    "\n"
    "**Project Description:**\n"
    "{description}\n"
    "\n"
    "**Development Team Structure:** {team_structure}\n"
    "\n"
    "**Estimated Initial Capital/Budget:** {capital}\n"
    "{capital_note}"
    "\n"
    "**Key Requirements for the Report:**\n"
    "1. **Analyze Complexity:** Based on the description{mockup_clause}, assess the overall complexity.\n"
    "2. **Estimate Design Effort:** {design_effort}\n"
    "3. **Technology Stack:** Suggest a suitable stack if none is specified, or comment on the "
    "feasibility of the technologies mentioned.  Estimate stack setup effort.\n"
    "4. **Feature Breakdown:** Break down the major features and estimate the effort for each.\n"
    "5. **Timeline:** Give a rough timeline for Design, Development, Testing and Deployment.\n"
    "6. **Cost Estimation:** Give a cost range from the estimated effort and typical freelance "
    "or agency rates; state the assumed rates and factor in the team structure.\n"
    "7. **Assumptions:** List every assumption made.\n"
    "8. **Professional Tone:** Use clear, concise language suitable for a client proposal.\n"
    "9. **Format:** Use markdown (headings, lists, bold text, tables).\n"
    "10. **Forecast:** Simulate the first year of operation (active users, demand, running "
    "costs) unless the description asks for a different simulation.\n"
    "\n"
    "Notes:\n"
    "a) Write the report in {language}.\n"
    "b) Research current prices for anything that has to be paid (licences, subscriptions, "
    "cloud services) and compare alternatives.\n"
    "c) Adapt every estimate to a client based in {market}; rates and costs differ by country.\n"
)

MOCKUP_FOLLOW_UP = (
    "\nBased on the details above and the provided mockup image, generate the quotation report."
)

_DESIGN_WITH_MOCKUP = (
    "Evaluate the provided mockup and estimate the time and cost for a UI/UX designer to "
    "refine and implement it; comment on how its quality affects complexity."
)
_DESIGN_WITHOUT_MOCKUP = (
    "No mockup provided; assume a standard design effort or recommend a design phase."
)


def build_quotation_prompt(
    request: QuotationRequest,
    *,
    language: str = "Spanish",
    market: str = "Mexico",
) -> str:
    """Fill :data:`QUOTATION_REPORT` from a quotation request."""
    has_mockup = request.mockup is not None
    if request.capital is not None:
        capital = f"USD {request.capital:,.2f}"
        capital_note = (
            "- Respect this budget where possible.  If it is not enough, say so and suggest "
            "an initial and a total capital.\n"
        )
    else:
        capital = "Not specified"
        capital_note = ""

    return QUOTATION_REPORT.format(
        name=request.name,
        description=request.description,
        team_structure=(
            "Solo developer / self-made"
            if request.is_self_made
            else "Team-based project (assume standard roles such as PM, developers and QA)"
        ),
        capital=capital,
        capital_note=capital_note,
        mockup_clause=" and the provided mockup image" if has_mockup else "",
        design_effort=_DESIGN_WITH_MOCKUP if has_mockup else _DESIGN_WITHOUT_MOCKUP,
        language=language,
        market=market,
    )
