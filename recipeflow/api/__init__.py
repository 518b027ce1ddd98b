"""HTTP API for recipes, company standards and executions."""
