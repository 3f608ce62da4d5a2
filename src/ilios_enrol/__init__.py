"""Ilios enrolment sync engine.

Reconciles course roster enrolments against cohort and learner-group
membership held in an Ilios directory.
"""

__version__ = "1.0.0"
