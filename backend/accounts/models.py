from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    User model

    Every user is a billing account: it owns websites, holds exactly one active
    plan subscription and accumulates AI usage against that plan.
    """
    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    #User Personal Information
    phone = models.CharField(max_length=20, blank=True, null=True, verbose_name="Phone Number")
    company = models.CharField(max_length=200, blank=True, null=True, verbose_name="Company")

    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.username
