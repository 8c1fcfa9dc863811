import logging
from typing import Optional

from dealflow.core.config import CoherenceConfig
from dealflow.core.types import CoherenceResult
from dealflow.coherence.extractors import AgentResults
from dealflow.coherence.tier3_coherence import Tier3CoherenceEngine
from dealflow.coherence.context_injection import inject_coherence_into_context

logger = logging.getLogger(__name__)


class Tier3CoherenceStage:
    """
    Pipeline stage between Tier-3 Batch 1 and Batch 2.

    Batch 1 (contradiction detector, scenario modeler, devil's advocate) must
    have completed before `run` is called; the synthesis scorer in Batch 2
    reads the scenario modeler's result after this stage has patched it.
    """

    def __init__(self, deal_id: str, config: Optional[CoherenceConfig] = None):
        self.deal_id = deal_id
        self.config = config or CoherenceConfig()
        self.config.validate()
        self.engine = Tier3CoherenceEngine(deal_id, config=self.config)

    def run(self, all_results: AgentResults) -> Optional[CoherenceResult]:
        """
        Reconcile Batch 1 outputs and inject the corrections.

        Args:
            all_results: Agent name -> result map (Tier-1 + Tier-3 Batch 1).
                Mutated in place when an adjustment is injected.

        Returns:
            CoherenceResult, or None when the stage is disabled

        Raises:
            RuntimeError: If the engine fails unexpectedly
        """
        if not self.config.enabled:
            logger.info("Tier-3 coherence disabled; skipping", extra={"deal_id": self.deal_id})
            return None

        logger.info("Running Tier-3 coherence stage...", extra={"deal_id": self.deal_id})
        try:
            result = self.engine.run(all_results)
        except Exception as e:
            logger.exception("Tier-3 coherence failed")
            raise RuntimeError(f"Tier-3 coherence failed: {e}") from e

        for warning in result.warnings:
            logger.warning("Coherence warning: %s", warning, extra={"deal_id": self.deal_id})

        injected = False
        if self.config.inject_results:
            injected = inject_coherence_into_context(all_results, result)

        logger.info(
            "Tier-3 coherence complete",
            extra={
                "deal_id": self.deal_id,
                "adjustments": len(result.adjustments),
                "coherence_score": result.coherence_score,
                "injected": injected,
            },
        )
        return result
