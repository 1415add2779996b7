"""
Migration: Initial watcher schema.

Creates monitors, change history, user plans, renderer usage accounting,
per-stage check metrics and the de-duplicated error log.
"""

import uuid
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Monitor",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("user_id", models.CharField(db_index=True, max_length=255)),
                ("name", models.CharField(max_length=200)),
                ("url", models.URLField(max_length=2000)),
                ("selector", models.CharField(max_length=500)),
                (
                    "frequency",
                    models.CharField(
                        choices=[("hourly", "Hourly"), ("daily", "Daily")],
                        default="daily",
                        max_length=10,
                    ),
                ),
                ("current_value", models.TextField(blank=True, null=True)),
                ("last_checked", models.DateTimeField(blank=True, null=True)),
                ("last_changed", models.DateTimeField(blank=True, null=True)),
                (
                    "last_status",
                    models.CharField(
                        choices=[
                            ("ok", "OK"),
                            ("blocked", "Blocked"),
                            ("selector_missing", "Selector Missing"),
                            ("error", "Error"),
                        ],
                        default="ok",
                        max_length=20,
                    ),
                ),
                ("last_error", models.CharField(blank=True, max_length=200, null=True)),
                ("active", models.BooleanField(default=True)),
                ("email_enabled", models.BooleanField(default=True)),
                ("consecutive_failures", models.IntegerField(default=0)),
                ("pause_reason", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "monitors",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="UserPlan",
            fields=[
                (
                    "user_id",
                    models.CharField(max_length=255, primary_key=True, serialize=False),
                ),
                (
                    "tier",
                    models.CharField(
                        choices=[("free", "Free"), ("pro", "Pro"), ("power", "Power")],
                        default="free",
                        max_length=10,
                    ),
                ),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "user_plans",
            },
        ),
        migrations.CreateModel(
            name="ErrorLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "level",
                    models.CharField(
                        choices=[
                            ("error", "Error"),
                            ("warning", "Warning"),
                            ("info", "Info"),
                        ],
                        max_length=10,
                    ),
                ),
                ("source", models.CharField(max_length=50)),
                ("error_type", models.CharField(blank=True, max_length=100, null=True)),
                ("message", models.TextField()),
                ("stack_trace", models.TextField(blank=True, default="")),
                ("monitor_id", models.UUIDField(blank=True, null=True)),
                ("context", models.JSONField(blank=True, default=dict)),
                ("occurrence_count", models.IntegerField(default=1)),
                (
                    "first_occurrence",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "last_occurrence",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("resolved", models.BooleanField(default=False)),
            ],
            options={
                "db_table": "error_logs",
                "ordering": ["-last_occurrence"],
            },
        ),
        migrations.CreateModel(
            name="MonitorChange",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("old_value", models.TextField(blank=True, null=True)),
                ("new_value", models.TextField()),
                ("detected_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "monitor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="changes",
                        to="watcher.monitor",
                    ),
                ),
            ],
            options={
                "db_table": "monitor_changes",
                "ordering": ["-detected_at"],
            },
        ),
        migrations.CreateModel(
            name="RendererUsage",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("user_id", models.CharField(max_length=255)),
                ("duration_ms", models.IntegerField(default=0)),
                ("success", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "monitor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="renderer_usage",
                        to="watcher.monitor",
                    ),
                ),
            ],
            options={
                "db_table": "renderer_usage",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="MonitorMetric",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "stage",
                    models.CharField(
                        choices=[
                            ("static", "Static Fetch"),
                            ("static_retry", "Static Retry"),
                            ("renderer", "Renderer"),
                            ("renderer_retry", "Renderer Retry"),
                            ("auto_heal", "Auto-Heal"),
                        ],
                        max_length=20,
                    ),
                ),
                ("duration_ms", models.IntegerField()),
                ("status", models.CharField(max_length=40)),
                ("selector_count", models.IntegerField(blank=True, null=True)),
                ("blocked", models.BooleanField(default=False)),
                ("block_reason", models.CharField(blank=True, max_length=100, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "monitor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="metrics",
                        to="watcher.monitor",
                    ),
                ),
            ],
            options={
                "db_table": "monitor_metrics",
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="monitor",
            index=models.Index(
                fields=["active", "last_checked"], name="monitors_active_1f0c2a_idx"
            ),
        ),
        migrations.AddIndex(
            model_name="monitor",
            index=models.Index(fields=["user_id"], name="monitors_user_id_7d4e19_idx"),
        ),
        migrations.AddIndex(
            model_name="errorlog",
            index=models.Index(
                fields=["level", "source", "resolved"],
                name="error_logs_level_3b9e51_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="errorlog",
            index=models.Index(
                fields=["last_occurrence"], name="error_logs_last_oc_a61c08_idx"
            ),
        ),
        migrations.AddIndex(
            model_name="monitorchange",
            index=models.Index(
                fields=["monitor", "detected_at"],
                name="monitor_cha_monitor_5e2d7f_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="rendererusage",
            index=models.Index(
                fields=["user_id", "created_at"],
                name="renderer_us_user_id_c4a810_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="rendererusage",
            index=models.Index(
                fields=["created_at"], name="renderer_us_created_9f12bd_idx"
            ),
        ),
        migrations.AddIndex(
            model_name="monitormetric",
            index=models.Index(
                fields=["monitor", "created_at"],
                name="monitor_met_monitor_2a7c3e_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="monitormetric",
            index=models.Index(
                fields=["created_at"], name="monitor_met_created_6b0d94_idx"
            ),
        ),
    ]
