from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    NOTIFICATION_CHOICES = [
        ('single', 'Single'),
        ('digest', 'Digest'),
        ('none', 'None'),
    ]

    email = models.EmailField(unique=True)
    # channel used for page history notifications
    receive_notifications = models.CharField(
        max_length=10,
        choices=NOTIFICATION_CHOICES,
        default='single',
    )

    def __str__(self):
        return self.username

    @property
    def display_name(self):
        return self.get_full_name() or self.username


class Group(models.Model):
    """A group of users that can be given access to pages"""

    name = models.SlugField(max_length=100, unique=True)
    full_name = models.CharField(max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.display_name

    @property
    def display_name(self):
        return self.full_name or self.name
