"""
Mail

Transactional e-mail delivery (resend.py) and the jinja2 templates for account e-mails.
"""
