"""
Factory Boy factories for notification models.
"""

import factory

from authentication.tests.factories import UserFactory
from notifications.models import Notification, NotificationType


class NotificationTypeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = NotificationType
        django_get_or_create = ("key",)

    key = factory.Sequence(lambda n: f"test.type.{n}")
    display_name = factory.LazyAttribute(lambda o: o.key.replace(".", " ").title())
    title_template = "Hello {name}"
    body_template = "Amount {amount}"
    is_active = True


class NotificationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Notification

    notification_type = factory.SubFactory(NotificationTypeFactory)
    recipient = factory.SubFactory(UserFactory)
    title = "Rendered title"
    body = "Rendered body"
