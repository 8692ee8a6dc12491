"""StoX: stochastic multistage recruitment models."""
