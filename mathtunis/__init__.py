"""MathTunis: step-by-step math answers from an ordered chain of solvers."""

__version__ = "0.1.0"
