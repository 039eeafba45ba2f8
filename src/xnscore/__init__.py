"""XnScore trust-scoring engine.

Derives the 0-100 XnScore for rotating-savings-circle members from an
append-only event log, maps it onto six trust tiers, tracks Elder vouches
and peer endorsements, and answers circle eligibility questions.
"""

__version__ = "1.0.0"
