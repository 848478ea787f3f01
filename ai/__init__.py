"""
AI Decision Module

Builds the market prompt and asks a language model for a one-line verdict.
The verdict is only a proposal: the decision parser and risk engine size and
validate it before anything reaches the action queue.
"""
