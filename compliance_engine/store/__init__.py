"""Repositories for compliance entities."""

from compliance_engine.store.base import ComplianceRepository
from compliance_engine.store.memory import InMemoryComplianceStore
from compliance_engine.store.postgres import PostgresComplianceStore

__all__ = ["ComplianceRepository", "InMemoryComplianceStore", "PostgresComplianceStore"]
