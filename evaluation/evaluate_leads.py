

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional
from datetime import datetime
from zoneinfo import ZoneInfo

import pandas as pd
from sklearn.metrics import precision_score, recall_score, f1_score, confusion_matrix
from scipy.stats import spearmanr


sys.path.insert(0, str(Path(__file__).parent.parent))

from leadscore.api.schemas.lead import Lead
from leadscore.config import get_settings
from leadscore.errors import ScoringFailure
from leadscore.services.lead_scorer import FallbackScorer, LeadScoringService
from leadscore.services.result_validator import to_reference_time
from leadscore.services.score_store import InMemoryScoreStore
from reasoning.llm_client import LLMClient


TIERS = [
    "Very Low Priority",
    "Low Priority",
    "Medium Priority",
    "High Priority",
    "Very High Priority",
]
PRIORITY_TIERS = {"High Priority", "Very High Priority"}

LEAD_COLUMNS = [
    "id", "tenant_id", "name", "phone", "email", "address", "city", "state", "pincode",
    "product_interested", "income_level", "employment", "loan_amount", "lead_source",
    "contact_method", "num_past_interactions", "last_contacted", "status", "short_notes",
]


def load_leads_data() -> pd.DataFrame:
    """Load leads from CSV."""
    data_path = Path(__file__).parent.parent / "data" / "leads.csv"
    return pd.read_csv(data_path, dtype=str)


def load_ground_truth() -> Dict:
    """Load ground truth labels."""
    gt_path = Path(__file__).parent.parent / "data" / "leads_ground_truth.json"
    with open(gt_path) as f:
        return json.load(f)


def tier_to_numeric(tier: str) -> int:
    """Convert tier to its rank for correlation."""
    return TIERS.index(tier) if tier in TIERS else 0


def reference_now(now: Optional[datetime]) -> datetime:
    """Current time in the contact timezone for the heuristic path."""
    tz = ZoneInfo(get_settings().contact_timezone)
    return to_reference_time(now or datetime.now(tz), tz)


def row_to_lead(row: pd.Series) -> Lead:
    """Build a Lead from a CSV row, treating empty cells as missing."""
    data = {
        column: (None if pd.isna(row.get(column)) else row.get(column))
        for column in LEAD_COLUMNS
    }
    data["num_past_interactions"] = int(data["num_past_interactions"] or 0)
    data["status"] = data["status"] or "new"
    return Lead(**data)


async def run_evaluation(use_llm: bool = False, now: Optional[datetime] = None) -> Dict:
    """Run the lead scoring evaluation."""
    print("=" * 60)
    print("LEAD SCORING EVALUATION")
    print("=" * 60)
    print(f"Timestamp: {datetime.now().isoformat()}")
    print(f"Scoring: {'LLM pipeline' if use_llm else 'heuristic fallback'}")
    print()

    leads_df = load_leads_data()
    ground_truth = load_ground_truth()

    labeled_leads = {item["lead_id"]: item for item in ground_truth["leads"]}
    eval_leads_df = leads_df[leads_df["id"].isin(labeled_leads.keys())]
    print(f"Evaluating {len(eval_leads_df)} labeled leads")
    print()

    fallback = FallbackScorer()
    service = None
    if use_llm:
        service = LeadScoringService(llm_client=LLMClient(), store=InMemoryScoreStore())

    results = []
    for _, row in eval_leads_df.iterrows():
        lead = row_to_lead(row)

        if service is not None:
            try:
                scored = await service.score_lead(lead, now=now, allow_fallback=True)
            except ScoringFailure as e:
                print(f"! {lead.id}: scoring failed ({type(e).__name__}: {e})")
                continue
        else:
            scored = fallback.score(lead, reference_now(now))

        gt_item = labeled_leads[lead.id]
        results.append({
            "lead_id": lead.id,
            "predicted_tier": scored.tier,
            "predicted_score": scored.score,
            "ground_truth_tier": gt_item["ground_truth_tier"],
            "scoring_method": scored.scoring_method,
            "rationale": gt_item["rationale"]
        })

    results_df = pd.DataFrame(results)
    if results_df.empty:
        raise SystemExit("No leads were scored")

    print("INDIVIDUAL PREDICTIONS:")
    print("-" * 60)
    for _, row in results_df.iterrows():
        match = "✓" if row["predicted_tier"] == row["ground_truth_tier"] else "✗"
        print(f"{match} {row['lead_id']}: Predicted={row['predicted_tier']} (score={row['predicted_score']}) | Actual={row['ground_truth_tier']}")
    print()

    print("PRECISION/RECALL FOR HIGH-PRIORITY TIERS:")
    print("-" * 60)

    y_true = [1 if t in PRIORITY_TIERS else 0 for t in results_df["ground_truth_tier"]]
    y_pred = [1 if t in PRIORITY_TIERS else 0 for t in results_df["predicted_tier"]]

    precision_high = precision_score(y_true, y_pred, zero_division=0)
    recall_high = recall_score(y_true, y_pred, zero_division=0)
    f1_high = f1_score(y_true, y_pred, zero_division=0)

    print(f"Precision (High+): {precision_high:.3f}")
    print(f"Recall (High+):    {recall_high:.3f}")
    print(f"F1 Score (High+):  {f1_high:.3f}")
    print()

    print("CONFUSION MATRIX (All Tiers):")
    print("-" * 60)
    cm = confusion_matrix(
        results_df["ground_truth_tier"],
        results_df["predicted_tier"],
        labels=TIERS
    )
    short = ["VLow", "Low", "Med", "High", "VHigh"]
    print(f"{'':>10} | " + " | ".join(f"{s:>5}" for s in short))
    print("-" * 50)
    for i, label in enumerate(short):
        print(f"{label:>10} | " + " | ".join(f"{cm[i, j]:>5}" for j in range(len(TIERS))))
    print()

    print("CORRELATION ANALYSIS:")
    print("-" * 60)
    gt_numeric = [tier_to_numeric(t) for t in results_df["ground_truth_tier"]]
    pred_numeric = results_df["predicted_score"].tolist()

    correlation, p_value = spearmanr(gt_numeric, pred_numeric)
    print(f"Spearman Correlation (Score vs GT Tier): {correlation:.3f} (p={p_value:.4f})")
    print()

    correct = int((results_df["predicted_tier"] == results_df["ground_truth_tier"]).sum())
    accuracy = correct / len(results_df)
    print(f"Overall Accuracy: {accuracy:.1%} ({correct}/{len(results_df)})")
    print()

    wrong = results_df[results_df["predicted_tier"] != results_df["ground_truth_tier"]]
    print("=" * 60)

    return {
        "precision_high": precision_high,
        "recall_high": recall_high,
        "f1_high": f1_high,
        "correlation": correlation,
        "accuracy": accuracy,
        "total_evaluated": len(results_df),
        "wrong_predictions": wrong.to_dict("records"),
        "confusion_matrix": cm.tolist(),
        "scoring": "LLM pipeline" if use_llm else "Heuristic fallback",
    }


def generate_report(metrics: Dict) -> Path:
    """Generate markdown evaluation report."""
    report_path = Path(__file__).parent / "evaluation_leads.md"

    rows = "\n".join(
        f"| **{tier}** | " + " | ".join(str(v) for v in counts) + " |"
        for tier, counts in zip(TIERS, metrics["confusion_matrix"])
    )

    report = f"""# Lead Scoring Evaluation Report

## Overview

- **Evaluation Date**: {datetime.now().strftime("%Y-%m-%d")}
- **Total Leads Evaluated**: {metrics['total_evaluated']}
- **Scoring**: {metrics['scoring']}

## Metrics Summary

| Metric | Value |
|--------|-------|
| **Precision (High+)** | {metrics['precision_high']:.3f} |
| **Recall (High+)** | {metrics['recall_high']:.3f} |
| **F1 Score (High+)** | {metrics['f1_high']:.3f} |
| **Spearman Correlation** | {metrics['correlation']:.3f} |
| **Overall Accuracy** | {metrics['accuracy']:.1%} |

## Confusion Matrix

| Actual \\ Predicted | {' | '.join(TIERS)} |
|---|{'|'.join([':---:'] * len(TIERS))}|
{rows}

## Wrong Predictions

"""

    for wp in metrics["wrong_predictions"][:5]:
        report += f"""- **{wp['lead_id']}**: predicted {wp['predicted_tier']} (score {wp['predicted_score']}), actual {wp['ground_truth_tier']}. {wp['rationale']}
"""

    with open(report_path, "w") as f:
        f.write(report)

    print(f"Report saved to: {report_path}")
    return report_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Evaluate lead scoring against labelled tiers")
    parser.add_argument("--use-llm", action="store_true", help="Score through the LLM pipeline")
    args = parser.parse_args()

    metrics = asyncio.run(run_evaluation(use_llm=args.use_llm))
    generate_report(metrics)
