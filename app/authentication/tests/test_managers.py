"""
Tests for UserManager.
"""

import pytest

from authentication.models import User


@pytest.mark.django_db
class TestCreateUser:
    """Tests for UserManager.create_user."""

    def test_creates_user_with_hashed_password(self):
        """Should store a hashed password, never the raw one."""
        user = User.objects.create_user(email="coach@Example.COM", password="s3cret-pass")

        assert user.pk is not None
        assert user.password != "s3cret-pass"
        assert user.check_password("s3cret-pass")

    def test_normalizes_email_domain(self):
        """Should lowercase the domain part of the email."""
        user = User.objects.create_user(email="Coach@Example.COM")

        assert user.email == "Coach@example.com"

    def test_without_password_sets_unusable_password(self):
        """Should mark the password unusable when none is given."""
        user = User.objects.create_user(email="client@example.com")

        assert not user.has_usable_password()

    def test_requires_email(self):
        """Should reject an empty email."""
        with pytest.raises(ValueError, match="Email"):
            User.objects.create_user(email="")

    def test_full_name_falls_back_to_email(self):
        """Should use the email when no name is set."""
        user = User.objects.create_user(email="anon@example.com")

        assert user.get_full_name() == "anon@example.com"


@pytest.mark.django_db
class TestCreateSuperuser:
    """Tests for UserManager.create_superuser."""

    def test_sets_staff_and_superuser_flags(self):
        """Should create a staff superuser."""
        admin = User.objects.create_superuser(email="ops@example.com", password="adminpass")

        assert admin.is_staff
        assert admin.is_superuser

    def test_rejects_non_staff_superuser(self):
        """Should refuse is_staff=False."""
        with pytest.raises(ValueError, match="is_staff"):
            User.objects.create_superuser(
                email="ops@example.com", password="adminpass", is_staff=False
            )
