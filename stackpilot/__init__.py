"""stackpilot: per-environment deployment orchestration for a serverless
document-query stack.

A run resolves a trigger (branch push or manual request) to an environment,
ensures the remote state backend, packages the compute units, adopts
resources that already exist, plans against recorded state, applies the
stored plan under a lock, then initializes the database and smoke-tests
the entry point:

  - Reproducible unit packages in a content-addressed artifact store
  - Plan/apply split with stale-plan detection (state lineage + serial)
  - Created or existing database, chosen per environment
  - Bounded readiness and initialization retries
  - Hash-chained run ledger of every stage transition
"""

__version__ = "0.1.0"
__description__ = "Per-environment deployment orchestration for a serverless document-query stack"

from stackpilot.core.orchestrator import DeploymentOrchestrator
from stackpilot.cli.app import app as cli

__all__ = ["DeploymentOrchestrator", "cli", "__version__"]
