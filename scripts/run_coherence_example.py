"""
Run the Tier-3 coherence stage on a snapshot of agent results and save the
coherence result plus the patched scenario modeler record to a JSON file.

The snapshot is a JSON object mapping agent name -> agent result record
(camelCase, as emitted by the agents). Without an argument a built-in sample
deal is used: an optimistic scenario model next to a very skeptical devil's
advocate.

Usage:
    python scripts/run_coherence_example.py [snapshot.json]
"""
import os
import sys
import json
import logging

from dealflow.core.config import DEBUG, AppConfig
from dealflow.core.types import AgentResult
from dealflow.orchestration.tier3_coherence_stage import Tier3CoherenceStage

OUT_DIR = ""
OUT_PATH = os.path.join(OUT_DIR, "coherence_run.json")
ERR_PATH = os.path.join(OUT_DIR, "coherence_run_error.log")

DEAL_ID = "sample-deal"


def _scenario(name, probability, multiple, rationale):
    return {
        "name": name,
        "description": f"{name.title()} case",
        "probability": {"value": probability, "rationale": rationale, "source": "scenario-modeler"},
        "exitOutcome": {"type": "acquisition_strategic", "timing": "5 years", "exitMultiple": multiple},
        "investorReturn": {
            "initialInvestment": 250_000,
            "multiple": multiple,
            "multipleCalculation": f"{multiple}x on entry",
            "holdingPeriodYears": 5,
        },
    }


SAMPLE_RESULTS = {
    "scenario-modeler": {
        "agentName": "scenario-modeler",
        "success": True,
        "data": {
            "findings": {
                "scenarios": [
                    _scenario("CATASTROPHIC", 10, 0, "Runway covers 18 months"),
                    _scenario("BEAR", 20, 0.5, "Acqui-hire"),
                    _scenario("BASE", 40, 4.5, "Strategic exit at 6x ARR"),
                    _scenario("BULL", 30, 15.8, "Category leader"),
                ],
                "probabilityWeightedOutcome": {
                    "expectedMultiple": 6.64,
                    "expectedMultipleCalculation": "sum of scenarios",
                    "expectedIRR": 46.0,
                },
            },
        },
    },
    "devils-advocate": {
        "agentName": "devils-advocate",
        "success": True,
        "data": {"findings": {"skepticismAssessment": {"score": 82, "verdict": "VERY_SKEPTICAL"}}},
    },
    "contradiction-detector": {
        "agentName": "contradiction-detector",
        "success": True,
        "data": {"redFlags": [{"severity": "CRITICAL", "title": "ARR restated between deck and data room"}]},
    },
    "financial-auditor": {
        "agentName": "financial-auditor",
        "success": True,
        "data": {"score": {"value": 38}},
    },
    "team-investigator": {
        "agentName": "team-investigator",
        "success": True,
        "data": {"score": {"value": 55}},
    },
}


def load_results(path=None):
    """Load a snapshot and wrap each record in an AgentResult."""
    if path:
        with open(path) as f:
            records = json.load(f)
    else:
        records = SAMPLE_RESULTS
    return {name: AgentResult.from_dict(record) for name, record in records.items()}


def main():
    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    snapshot_path = sys.argv[1] if len(sys.argv) > 1 else None
    print(f"Running Tier-3 coherence for {DEAL_ID}")
    try:
        config = AppConfig.from_env()
        all_results = load_results(snapshot_path)
        stage = Tier3CoherenceStage(DEAL_ID, config=config.coherence)
        result = stage.run(all_results)
        if result is None:
            print("Coherence stage is disabled (COHERENCE_ENABLED=false); nothing to do.")
            return

        modeler = all_results.get("scenario-modeler")
        output = {
            "dealId": DEAL_ID,
            "summary": result.summary_text,
            "coherence": result.to_dict(),
            "scenarioModeler": modeler.to_dict() if modeler else None,
        }
        with open(OUT_PATH, "w") as f:
            json.dump(output, f, indent=2)

        print(result.summary_text)
        print(f"Saved run output to {OUT_PATH}")
    except Exception as e:
        print("Run failed:", e)
        with open(ERR_PATH, "w") as ef:
            ef.write(str(e))
        print(f"Wrote error to {ERR_PATH}")
        sys.exit(1)


if __name__ == "__main__":
    main()
