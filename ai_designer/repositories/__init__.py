from ai_designer.repositories.designs import DesignStateRepository
from ai_designer.repositories.failures import GenerationFailuresRepository
from ai_designer.repositories.history import DesignerHistoryRepository
from ai_designer.repositories.metrics import DesignerMetricsRepository
from ai_designer.repositories.platform import PlatformRepository
from ai_designer.repositories.tokens import TokenPurchasesRepository

__all__ = [
    "DesignStateRepository",
    "DesignerHistoryRepository",
    "DesignerMetricsRepository",
    "GenerationFailuresRepository",
    "PlatformRepository",
    "TokenPurchasesRepository",
]
