"""
sqldeploy - schema deployment orchestrator.

Builds a phase-ordered deployment plan from schema descriptors and a SQL
script repository, classifies its risk, executes it in one transaction and
records the result as a versioned, immutable artifact.
"""

__version__ = "0.4.0"
