# Case backend access
from .client import Case, CasePage, CaseStatus, CasesClient, CasesClientConfig

__all__ = ["Case", "CasePage", "CaseStatus", "CasesClient", "CasesClientConfig"]
