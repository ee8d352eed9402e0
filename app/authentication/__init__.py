"""
Authentication application.

Provides the email-based User model shared by clients (payers), coaches
(payout recipients) and staff operating the settlement admin.

Usage:
    from authentication.models import User
"""
