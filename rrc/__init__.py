"""Rolling Restart Controller (RRC).

Small controller that restarts a labelled set of deployments on a fixed
interval and records what it touched:
 - label selector matching of candidate workloads
 - restart markers written to the object and its pod template
 - conflict-safe writes under optimistic concurrency
 - an all-or-nothing rollout engine with a requeue directive
 - a work-queue scheduler, HTTP API and CLI around it

The core is deliberately small so the decision logic can be audited.
"""
