"""
Docket Lite - Multi-tenant Case Management
==========================================

A FastAPI service for law firms:
1. Firms, users and clients with role based access
2. Cases, tasks, comments and attachment metadata
3. SuperAdmin platform operations with audited impersonation
"""

__version__ = "1.0.0"
