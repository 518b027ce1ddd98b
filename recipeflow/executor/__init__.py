"""Workflow execution for recipes.

Takes a recipe (or a per-run step override), runs its steps in order and
pauses wherever a step needs human review.

Architecture (bottom-up):
- variables: {{variable}} resolution against inputs, outputs and standards
- step_runner: Resolve, dispatch to an executor, classify, persist one step
- engine: State machine (start, approve, reject, retry, cancel, delete)
- store: Executions and step executions in the DB
"""
