#!/usr/bin/env python3
"""Example: Running a dual-evaluator workflow with recorded model outputs."""

import json
import logging
import sys
from pathlib import Path

from ocean_validation import WorkflowOrchestrator, load_config
from ocean_validation.collaborators import ScriptedGenerator, ScriptedValidator

FIXTURES = Path(__file__).parent / "fixtures"


def main():
    """Main entry point."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = load_config(project_root=Path(__file__).parent.parent)
    generator = ScriptedGenerator.from_file(FIXTURES / "generator.yml")
    validator = ScriptedValidator.from_file(FIXTURES / "validator.yml")

    print("=" * 60)
    print("OCEAN Dual Validation Workflow")
    print("=" * 60)

    with WorkflowOrchestrator(config, generator, validator) as orchestrator:
        status = orchestrator.run(
            "example-response",
            context={"assessment": "big-five-120"},
            options={"confidence_threshold": 85, "max_iterations": 2},
            timeout=60,
        )
        summary = orchestrator.metrics.summary()

    print(f"\nStatus:      {status['status']}")
    print(f"Iterations:  {status['iteration']}")
    if status["results"]:
        print(f"Confidence:  {status['results']['final_confidence']}")
        for recommendation in status["results"]["recommendations"]:
            print(f"  - {recommendation}")

    print("\nFeedback:")
    for item in status["feedback"]:
        print(
            f"  [{item['priority']}] {item['node_id']} ({item['category']}) "
            f"applied={item['applied']} delta={item['confidence_improvement']}"
        )

    print("\nMetrics:")
    print(json.dumps(summary, indent=2))

    sys.exit(0 if status["status"] == "completed" else 1)


if __name__ == "__main__":
    main()
