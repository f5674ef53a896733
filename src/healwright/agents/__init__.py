"""Agents that drive healing sessions and report on them."""
