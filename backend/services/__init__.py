"""
Services Module - domain access used by the orchestration engine
"""

from .finance_facade import FinanceFacade, PgFinanceFacade, calculate_budget_status

__all__ = ["FinanceFacade", "PgFinanceFacade", "calculate_budget_status"]
