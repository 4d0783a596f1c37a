"""
Storage package for tracenet results.
"""

from .duckdb_adapter import DuckDBAdapter

__all__ = ['DuckDBAdapter']
