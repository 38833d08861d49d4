"""
Microsoft 365 Integration

Client side of the Microsoft identity platform (OAuth 2.0 authorization code and refresh token
grants) and the handful of Microsoft Graph calls the CRM needs.

Modules:
- oauth.py: Authorization URL, code exchange, connection completion and token refresh
- graph.py: Mailbox owner lookup, inbox change-notification subscriptions and webhook payloads
"""
