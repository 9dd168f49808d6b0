import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ItemCalendar",
            fields=[
                ("item_id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="BookedDay",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("item_id", models.CharField(max_length=64)),
                ("day", models.DateField()),
                ("reservation_id", models.CharField(db_index=True, max_length=64)),
            ],
            options={
                "ordering": ["item_id", "day"],
            },
        ),
        migrations.CreateModel(
            name="Reservation",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("item_id", models.CharField(max_length=64)),
                ("item_owner_uid", models.CharField(max_length=64)),
                ("renter_uid", models.CharField(max_length=64)),
                ("start_date", models.DateField()),
                (
                    "end_date",
                    models.DateField(help_text="Exclusive checkout day, after start_date."),
                ),
                ("days", models.PositiveIntegerField()),
                ("total", models.PositiveIntegerField(help_text="Amount in minor currency units.")),
                ("is_free", models.BooleanField(default=False)),
                ("min_rental_days", models.PositiveIntegerField(default=1)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("requested", "requested"),
                            ("accepted", "accepted"),
                            ("rejected", "rejected"),
                            ("paid", "paid"),
                            ("picked_up", "picked up"),
                            ("returned", "returned"),
                            ("paid_out", "paid out"),
                            ("canceled", "canceled"),
                        ],
                        default="requested",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(blank=True, null=True)),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("picked_up_at", models.DateTimeField(blank=True, null=True)),
                ("returned_at", models.DateTimeField(blank=True, null=True)),
                ("paid_out_at", models.DateTimeField(blank=True, null=True)),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                ("refund_requested_at", models.DateTimeField(blank=True, null=True)),
                ("reject_reason", models.CharField(blank=True, default="", max_length=300)),
                ("canceled_by", models.CharField(blank=True, default="", max_length=64)),
                ("payment_reference", models.CharField(blank=True, default="", max_length=120)),
                ("renter_can_review_owner", models.BooleanField(default=True)),
                ("renter_can_review_item", models.BooleanField(default=True)),
                ("owner_can_review_renter", models.BooleanField(default=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["start_date", "id"],
            },
        ),
        migrations.CreateModel(
            name="AppliedGatewayEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("gateway_event_id", models.CharField(max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "reservation",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="applied_events",
                        to="reservations.reservation",
                    ),
                ),
            ],
        ),
        migrations.AddIndex(
            model_name="reservation",
            index=models.Index(fields=["item_id", "status"], name="reservation_item_status_idx"),
        ),
        migrations.AddIndex(
            model_name="reservation",
            index=models.Index(fields=["renter_uid", "status"], name="reservation_renter_status_idx"),
        ),
        migrations.AddIndex(
            model_name="reservation",
            index=models.Index(
                fields=["item_owner_uid", "status"], name="reservation_owner_status_idx"
            ),
        ),
        migrations.AddConstraint(
            model_name="bookedday",
            constraint=models.UniqueConstraint(fields=("item_id", "day"), name="booked_day_unique"),
        ),
        migrations.AddConstraint(
            model_name="appliedgatewayevent",
            constraint=models.UniqueConstraint(
                fields=("reservation", "gateway_event_id"),
                name="reservation_gateway_event_unique",
            ),
        ),
    ]
