"""SuiteCRM access: REST v8 client, field metadata cache, OAuth2 provisioning."""

from src.suitecrm_sync.crm.client import AuthState, SuiteCRMClient
from src.suitecrm_sync.crm.field_cache import FieldCacheManager
from src.suitecrm_sync.crm.schemas import CreateRecordResult, CrmFieldDefinition

__all__ = [
    "AuthState",
    "CreateRecordResult",
    "CrmFieldDefinition",
    "FieldCacheManager",
    "SuiteCRMClient",
]
