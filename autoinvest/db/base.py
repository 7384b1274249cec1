"""
Database model registry.

Importing this module registers every table model with SQLModel's metadata,
which ``create_all()`` needs before it can build the schema.
"""

from autoinvest.models import (  # noqa: F401
    AutoInvestAllocation,
    AutoInvestExecution,
    AutoInvestExecutionDetail,
    AutoInvestPlan,
    DRIPAccrual,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
    DRIPTransaction,
    Holding,
)
