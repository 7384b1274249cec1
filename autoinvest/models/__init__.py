"""SQLModel table models — import here so metadata is populated."""

from autoinvest.models.drip import (  # noqa: F401
    DRIPAccrual,
    DRIPCustomAllocation,
    DRIPPropertySetting,
    DRIPSettings,
    DRIPTransaction,
)
from autoinvest.models.execution import AutoInvestExecution, AutoInvestExecutionDetail  # noqa: F401
from autoinvest.models.holding import Holding  # noqa: F401
from autoinvest.models.plan import AutoInvestAllocation, AutoInvestPlan  # noqa: F401
