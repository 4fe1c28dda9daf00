from linksy.repositories.audit_logs import InMemoryAuditLogsRepository, PostgresAuditLogsRepository
from linksy.repositories.crisis_keywords import InMemoryCrisisKeywordsRepository, PostgresCrisisKeywordsRepository
from linksy.repositories.providers import InMemoryProvidersRepository, PostgresProvidersRepository
from linksy.repositories.tickets import InMemoryTicketsRepository, PostgresTicketsRepository

__all__ = [
    "InMemoryAuditLogsRepository",
    "PostgresAuditLogsRepository",
    "InMemoryCrisisKeywordsRepository",
    "PostgresCrisisKeywordsRepository",
    "InMemoryProvidersRepository",
    "PostgresProvidersRepository",
    "InMemoryTicketsRepository",
    "PostgresTicketsRepository",
]
