"""
Notifications app: in-app notification records for settlement events.

Delivery channels (push, email) are handled outside this service; the
records created here are what those consumers read.

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=coach,
        type_key="payout.submitted",
        data={"amount": "155.00", "currency": "CHF"},
    )
"""
