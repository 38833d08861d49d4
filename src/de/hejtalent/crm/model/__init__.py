"""
Database Models

This package defines the database models for the CRM functions service using SQLAlchemy ORM.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- ms365.py: OAuth tokens and Graph subscriptions for connected mailboxes
- crm.py: CRM contacts and their research results
- accounts.py: User roles, profiles and e-mail settings
- outreach.py: Outreach campaigns and their e-mail sequences
- health.py: Health monitoring gauge

The ms365 tables belong to this service and are created by its alembic migration. The CRM,
account and outreach tables belong to the CRM schema; only the columns used here are mapped.
"""
