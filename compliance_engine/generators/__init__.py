"""Sample portfolio generators."""

from compliance_engine.generators.base import BaseGenerator
from compliance_engine.generators.portfolio import FinancialsGenerator, PortfolioGenerator

__all__ = ["BaseGenerator", "FinancialsGenerator", "PortfolioGenerator"]
