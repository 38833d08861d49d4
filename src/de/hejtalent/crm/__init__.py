"""
HejTalent CRM Functions

This package implements the server-side functions of the HejTalent recruiting CRM as a single
aiohttp service. The frontend talks to it for everything that needs a secret: the Microsoft 365
mailbox integration, maintenance sweeps over CRM records, and account e-mails.

Key Components:
- app: Web application layer with request handlers and server configuration
- ms365: Microsoft identity platform OAuth flows and Microsoft Graph calls
- identity: Client for the hosted auth API (token validation, roles, recovery links)
- mail: Transactional e-mail delivery and templates
- model: Database models for tokens, subscriptions and the CRM tables this service touches
- maintenance: Reconciliation sweeps over CRM records
- accounts: Invitation and password reset e-mails

MS365 Integration Flow:
1. The signed-in user asks for an authorization URL (OAuth start)
2. Microsoft redirects back with an authorization code (OAuth callback)
3. The code is exchanged for tokens, the mailbox address is resolved and the token row upserted
4. A change-notification subscription for the inbox is registered (best-effort)
5. Callers refresh the access token on demand before using it
"""
