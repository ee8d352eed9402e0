"""
Django admin configuration for notifications.
"""

from django.contrib import admin

from notifications.models import Notification, NotificationType


@admin.register(NotificationType)
class NotificationTypeAdmin(admin.ModelAdmin):
    list_display = ("key", "display_name", "is_active")
    list_filter = ("is_active",)
    search_fields = ("key", "display_name")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "notification_type", "recipient", "title", "is_read", "created_at")
    list_filter = ("notification_type", "is_read")
    search_fields = ("recipient__email", "title")
    raw_id_fields = ("recipient",)
    readonly_fields = ("created_at", "updated_at")
