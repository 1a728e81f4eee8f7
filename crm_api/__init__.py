"""
Data-access layer for the CRM service.

Callers obtain a backend from `crm_api.dependencies.get_backend()` and use
the operations of `crm_api.backend.CrmBackend`; whether they are served by
the REST API or by Firestore is decided once, from settings.
"""
