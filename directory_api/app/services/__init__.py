"""
Service layer.

Each service encapsulates the business rules for one domain and runs
its reads and writes inside a single database transaction, so API
handlers stay thin.
"""
