"""Safety-document lifecycle and risk-scoring core."""
