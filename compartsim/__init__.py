"""
compartsim: Compartmental Epidemic Modelling

This package builds stratified compartmental models whose compartments,
parameters and processes are defined by algebraic expressions, keeps those
cross-referencing definitions consistent, and integrates the resulting ODE
system with fixed-step and adaptive methods.
"""

__version__ = "1.0.0"
__author__ = "compartsim developers"
