"""
Pairwise Difficulty
-------------------

A package for comparing perceived and empirical difficulty of test items.

This package provides tools for:
- Loading and normalizing pairwise comparison judgements
- Fitting Bradley-Terry models per judge cohort
- Computing separation reliability of the estimates
- Deriving reference difficulties from IRT expected-score curves
- Correlating perceived difficulty against the reference
"""
