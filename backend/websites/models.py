from django.contrib.auth import get_user_model
from django.db import models

# Get the User model (supports custom user models)
User = get_user_model()


class Website(models.Model):
    """
    A site owned by an account.

    Only the count of active sites matters to billing: plans cap how many
    active sites an account may keep.
    """

    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='websites',
        help_text="Account that owns this site"
    )
    name = models.CharField(max_length=200)
    domain = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(
        default=True,
        help_text="Inactive sites do not count against the plan's site limit"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'website'
        verbose_name = 'Website'
        verbose_name_plural = 'Websites'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner', 'is_active'], name='website_owner_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.owner})"
