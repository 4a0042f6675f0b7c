"""
Domain services containing pure business logic.
"""

from domain.services.prize_rule_engine import PrizeInput, compute_prizes

__all__ = ["PrizeInput", "compute_prizes"]
