import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("contenttypes", "0002_remove_content_type_name"),
        ("pages", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PageHistory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("item_id", models.PositiveBigIntegerField(blank=True, null=True)),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("page_created", "Page created"),
                            ("deleted", "Deleted"),
                            ("updated_content", "Updated content"),
                            ("change_title", "Changed title"),
                            ("make_public", "Made public"),
                            ("make_private", "Made private"),
                            ("add_star", "Added star"),
                            ("remove_star", "Removed star"),
                            ("start_watching", "Started watching"),
                            ("stop_watching", "Stopped watching"),
                            ("grant_group_access", "Granted group access"),
                            ("grant_user_access", "Granted user access"),
                            ("revoked_group_access", "Revoked group access"),
                            ("revoked_user_access", "Revoked user access"),
                            ("add_comment", "Added comment"),
                            ("update_comment", "Updated comment"),
                            ("destroy_comment", "Destroyed comment"),
                        ],
                        max_length=40,
                    ),
                ),
                ("details", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("single_sent_at", models.DateTimeField(blank=True, null=True)),
                ("digest_sent_at", models.DateTimeField(blank=True, null=True)),
                (
                    "item_type",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="contenttypes.contenttype",
                    ),
                ),
                (
                    "page",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="histories",
                        to="pages.page",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who caused the change",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="page_histories",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "page histories",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["page", "created_at"], name="history_page_created_idx"),
                    models.Index(fields=["digest_sent_at", "created_at"], name="history_digest_pending_idx"),
                ],
            },
        ),
    ]
