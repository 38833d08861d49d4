"""
CRM Functions Application Layer

This package implements the web application layer of the CRM functions service with aiohttp:
the Microsoft 365 mailbox endpoints, maintenance and the research queue, campaign test mails,
account administration and the internal health endpoints.

Key Components:
- server.py: Web server configuration, lifecycle and middleware setup
- config.py: Settings and AppKeys for dependency injection
- cors.py: CORS headers shared by every endpoint
- metrics.py: Metrics abstraction over StatsD/Telegraf
- tasks.py: Background tasks
- handlers/: Request handlers
- cli.py: Entry point for running the server
- util/: Operator command line utilities
"""
