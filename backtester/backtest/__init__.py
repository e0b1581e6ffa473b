"""Backtest Engine and Bar-by-Bar Simulator.

Provides look-ahead-safe indicators, the rule DSL evaluator, the fill model
and the trade simulation loop for validating strategies against daily bars.
"""
