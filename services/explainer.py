# services/explainer.py
"""Recommendation rationale and optional LLM narrative using Groq."""

from typing import List, Optional
from groq import Groq

from config import GROQ_API_KEY, GROQ_MODEL
from models import Evaluation, RankingEntry, SuspiciousBidReport


class Explainer:
    """Generate recommendation justifications and executive narratives."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else GROQ_API_KEY
        self.model = model or GROQ_MODEL
        self._client = None

    @property
    def client(self) -> Groq:
        if self._client is None:
            if not self.api_key:
                raise ValueError("GROQ_API_KEY is required. Please configure it in .env file.")
            self._client = Groq(api_key=self.api_key)
        return self._client

    def generate_rationale(
        self,
        top: RankingEntry,
        rejected: Optional[SuspiciousBidReport] = None
    ) -> List[str]:
        """Deterministic justification points for the recommendation."""
        if rejected is not None:
            return [
                "Second-ranked bid recommended due to risk factors",
                f"Top bid has {len(rejected.issues)} suspicious indicators",
                "Alternative provides better risk-adjusted value"
            ]

        return [
            f"Highest weighted score: {top.weighted_score:.2f}",
            "Best price-performance ratio",
            f"Price score: {top.price_score:.1f}/100",
            f"Quality score: {top.quality_score:.1f}/100",
            f"Time score: {top.time_score:.1f}/100"
        ]

    @staticmethod
    def alternative_rationale(entry: RankingEntry) -> str:
        return f"Alternative option with {entry.weighted_score:.2f} score"

    def explain(self, evaluation: Evaluation) -> str:
        """Generate a natural language summary of the evaluation outcome."""
        prompt = self._build_prompt(evaluation)

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "system",
                    "content": (
                        "You are a senior public procurement analyst for construction tenders. "
                        "Explain bid evaluation results (price matrix, quality and time scores, "
                        "suspicious-bid findings) formally and objectively for an award committee. "
                        "Do not invent figures that are not in the data."
                    )
                },
                {"role": "user", "content": prompt}
            ],
            temperature=0.1,
            max_tokens=4096
        )
        return response.choices[0].message.content

    def _build_prompt(self, evaluation: Evaluation) -> str:
        rankings = "\n".join(
            f"- #{r.rank} {r.bid_id} ({r.bidder_id}): weighted={r.weighted_score:.2f} "
            f"(price={r.price_score:.1f}, quality={r.quality_score:.1f}, time={r.time_score:.1f}, "
            f"total={r.total_price:,.2f})"
            for r in evaluation.rankings
        )

        flagged = "\n".join(
            f"- {report.bid_id}: risk {report.risk_level} "
            f"({', '.join(sorted({i.type for i in report.issues}))})"
            for report in evaluation.suspicious_analysis.detected
        ) or "- none"

        exam = evaluation.formal_examination
        disqualified = ", ".join(
            f"{d.bid.id} [{', '.join(d.reasons)}]" for d in exam.disqualified_bids
        ) or "none"

        rec = evaluation.recommendation
        market = evaluation.market_analysis

        return f"""Summarize this construction tender evaluation for the award committee.

PROJECT: {evaluation.project_name} ({evaluation.project_id})
BIDS RECEIVED: {exam.total_bids}, qualified: {len(exam.qualified_bids)}
DISQUALIFIED: {disqualified}

MARKET: average total {market.average_total:,.2f}, median {market.median_total:,.2f}, std dev {market.standard_deviation:,.2f}

RANKING:
{rankings}

SUSPICIOUS BIDS:
{flagged}

RECOMMENDATION: {rec.bid_id} ({rec.bidder_id}), confidence {rec.confidence:.2f}
JUSTIFICATION: {'; '.join(rec.justification)}

Provide a formal 2-3 paragraph analysis that:
1. States the recommended bid and why it was selected
2. Explains any risk findings and how they affected the recommendation
3. Compares the recommendation with the listed alternatives"""
