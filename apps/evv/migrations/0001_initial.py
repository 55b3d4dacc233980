import uuid
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ServiceClient',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('medicaid_id', models.CharField(blank=True, db_index=True, max_length=50)),
                ('address_line', models.CharField(blank=True, max_length=255)),
                ('city', models.CharField(blank=True, max_length=100)),
                ('state', models.CharField(db_index=True, max_length=2)),
                ('postal_code', models.CharField(blank=True, max_length=10)),
                ('latitude', models.FloatField(blank=True, null=True)),
                ('longitude', models.FloatField(blank=True, null=True)),
                ('geofence_radius_meters', models.PositiveIntegerField(blank=True, help_text='Client-specific fence; falls back to the state default', null=True)),
                ('payer_type', models.CharField(default='MEDICAID', max_length=30)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='serviceclient_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='serviceclient_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_serviceclient_set', to='core.organization')),
            ],
            options={
                'ordering': ['last_name', 'first_name'],
            },
        ),
        migrations.CreateModel(
            name='Caregiver',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('employee_id', models.CharField(db_index=True, max_length=50)),
                ('skills', models.JSONField(blank=True, default=list)),
                ('user', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='caregiver_profile', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='caregiver_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='caregiver_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_caregiver_set', to='core.organization')),
            ],
            options={
                'ordering': ['last_name', 'first_name'],
            },
        ),
        migrations.CreateModel(
            name='Credential',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('credential_type', models.CharField(db_index=True, max_length=50)),
                ('status', models.CharField(choices=[('ACTIVE', 'Active'), ('CLEARED', 'Cleared'), ('PENDING', 'Pending'), ('EXPIRED', 'Expired'), ('REVOKED', 'Revoked')], default='ACTIVE', max_length=20)),
                ('issued_on', models.DateField(blank=True, null=True)),
                ('expires_on', models.DateField(blank=True, null=True)),
                ('reference_number', models.CharField(blank=True, max_length=100)),
                ('caregiver', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='credentials', to='evv.caregiver')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='credential_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='credential_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_credential_set', to='core.organization')),
            ],
            options={
                'ordering': ['caregiver', 'credential_type'],
            },
        ),
        migrations.CreateModel(
            name='Visit',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('service_type_code', models.CharField(max_length=20)),
                ('service_type_name', models.CharField(blank=True, max_length=100)),
                ('required_skills', models.JSONField(blank=True, default=list)),
                ('scheduled_start', models.DateTimeField(db_index=True)),
                ('scheduled_end', models.DateTimeField()),
                ('status', models.CharField(choices=[('SCHEDULED', 'Scheduled'), ('IN_PROGRESS', 'In Progress'), ('COMPLETED', 'Completed'), ('CANCELLED', 'Cancelled')], default='SCHEDULED', max_length=20)),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='visits', to='evv.serviceclient')),
                ('caregiver', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='visits', to='evv.caregiver')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='visit_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='visit_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_visit_set', to='core.organization')),
            ],
            options={
                'ordering': ['-scheduled_start'],
            },
        ),
        migrations.CreateModel(
            name='EVVRecord',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('submission_status', models.CharField(choices=[('NOT_SUBMITTED', 'Not Submitted'), ('QUEUED', 'Queued'), ('RETRYING', 'Retrying'), ('SUBMITTED', 'Submitted'), ('FAILED', 'Failed'), ('CANCELLED', 'Cancelled')], db_index=True, default='NOT_SUBMITTED', max_length=20)),
                ('submitted_to_payor', models.BooleanField(default=False)),
                ('payor_approval_status', models.CharField(blank=True, choices=[('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('DENIED', 'Denied'), ('PENDING_INFO', 'Pending Information'), ('APPEALED', 'Appealed')], max_length=20)),
                ('confirmation_id', models.CharField(blank=True, max_length=100)),
                ('submitted_content_hash', models.CharField(blank=True, max_length=64)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('submission_attempt_count', models.PositiveIntegerField(default=0)),
                ('retry_task_id', models.CharField(blank=True, max_length=255)),
                ('next_retry_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('is_superseded', models.BooleanField(db_index=True, default=False)),
                ('superseded_at', models.DateTimeField(blank=True, null=True)),
                ('visit_id', models.UUIDField(db_index=True)),
                ('client_id', models.UUIDField(db_index=True)),
                ('caregiver_id', models.UUIDField(db_index=True)),
                ('client_name', models.CharField(max_length=200)),
                ('client_medicaid_id', models.CharField(blank=True, max_length=50)),
                ('caregiver_name', models.CharField(max_length=200)),
                ('caregiver_employee_id', models.CharField(blank=True, max_length=50)),
                ('service_type_code', models.CharField(max_length=20)),
                ('service_type_name', models.CharField(blank=True, max_length=100)),
                ('state', models.CharField(db_index=True, max_length=2)),
                ('payer_type', models.CharField(default='MEDICAID', max_length=30)),
                ('rule_table_version', models.PositiveIntegerField(default=0)),
                ('aggregator', models.CharField(blank=True, choices=[('HHAEXCHANGE', 'HHAeXchange'), ('SANDATA', 'Sandata'), ('TELLUS', 'Tellus')], max_length=20)),
                ('service_latitude', models.FloatField(blank=True, null=True)),
                ('service_longitude', models.FloatField(blank=True, null=True)),
                ('service_address', models.CharField(blank=True, max_length=255)),
                ('service_date', models.DateField(db_index=True)),
                ('scheduled_start', models.DateTimeField()),
                ('scheduled_end', models.DateTimeField()),
                ('clock_in_time', models.DateTimeField(blank=True, null=True)),
                ('clock_out_time', models.DateTimeField(blank=True, null=True)),
                ('total_duration', models.PositiveIntegerField(blank=True, help_text='Minutes', null=True)),
                ('record_status', models.CharField(choices=[('PENDING', 'Pending'), ('IN_PROGRESS', 'In Progress'), ('COMPLETE', 'Complete'), ('CANCELLED', 'Cancelled')], db_index=True, default='PENDING', max_length=20)),
                ('verification_level', models.CharField(blank=True, choices=[('FULL', 'Full'), ('PARTIAL', 'Partial'), ('PHONE', 'Phone'), ('MANUAL', 'Manual'), ('EXCEPTION', 'Exception')], max_length=20)),
                ('compliance_flags', models.JSONField(blank=True, default=list)),
                ('requires_review', models.BooleanField(db_index=True, default=False)),
                ('reconciliation_pending', models.BooleanField(db_index=True, default=False)),
                ('version', models.PositiveIntegerField(default=1)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='evvrecord_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='evvrecord_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_evvrecord_set', to='core.organization')),
            ],
            options={
                'ordering': ['-service_date', '-scheduled_start'],
            },
        ),
        migrations.AddConstraint(
            model_name='evvrecord',
            constraint=models.UniqueConstraint(fields=('organization', 'visit_id'), name='evv_record_unique_visit'),
        ),
        migrations.CreateModel(
            name='TimeEntry',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('visit_id', models.UUIDField(db_index=True)),
                ('caregiver_id', models.UUIDField(db_index=True)),
                ('entry_type', models.CharField(choices=[('CLOCK_IN', 'Clock In'), ('CLOCK_OUT', 'Clock Out')], max_length=10)),
                ('timestamp', models.DateTimeField(db_index=True)),
                ('received_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('latitude', models.FloatField(blank=True, null=True)),
                ('longitude', models.FloatField(blank=True, null=True)),
                ('accuracy', models.FloatField(blank=True, help_text='Meters', null=True)),
                ('distance_from_address', models.FloatField(blank=True, help_text='Meters', null=True)),
                ('geofence_radius', models.FloatField(blank=True, null=True)),
                ('within_geofence', models.BooleanField(blank=True, null=True)),
                ('verification_method', models.CharField(choices=[('GPS', 'GPS'), ('NETWORK', 'Network'), ('PHONE', 'Telephony'), ('MANUAL', 'Manual'), ('BIOMETRIC', 'Biometric'), ('EXCEPTION', 'Exception')], default='GPS', max_length=20)),
                ('verification_level', models.CharField(choices=[('FULL', 'Full'), ('PARTIAL', 'Partial'), ('PHONE', 'Phone'), ('MANUAL', 'Manual'), ('EXCEPTION', 'Exception')], max_length=20)),
                ('exception_reason', models.CharField(blank=True, max_length=50)),
                ('device_info', models.JSONField(blank=True, default=dict)),
                ('signature_captured', models.BooleanField(default=False)),
                ('verification_passed', models.BooleanField(default=False)),
                ('verification_issues', models.JSONField(blank=True, default=list)),
                ('compliance_flags', models.JSONField(blank=True, default=list)),
                ('rejection_code', models.CharField(blank=True, max_length=30)),
                ('requires_supervisor_review', models.BooleanField(default=False)),
                ('status', models.CharField(choices=[('PENDING_REVIEW', 'Pending Review'), ('ACCEPTED', 'Accepted'), ('OVERRIDDEN', 'Overridden'), ('PROVISIONAL', 'Provisional')], db_index=True, default='PENDING_REVIEW', max_length=20)),
                ('recorded_offline', models.BooleanField(default=False)),
                ('reconciled_at', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=1)),
                ('record', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='time_entries', to='evv.evvrecord')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='timeentry_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='timeentry_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_timeentry_set', to='core.organization')),
            ],
            options={
                'ordering': ['timestamp'],
                'verbose_name_plural': 'time entries',
            },
        ),
        migrations.CreateModel(
            name='ManualOverride',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('overridden_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('reason_code', models.CharField(max_length=50)),
                ('reason', models.TextField()),
                ('prior_outcome', models.JSONField(blank=True, default=dict)),
                ('time_entry', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='overrides', to='evv.timeentry')),
                ('record', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='overrides', to='evv.evvrecord')),
                ('supervisor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='evv_overrides', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='manualoverride_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='manualoverride_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_manualoverride_set', to='core.organization')),
            ],
            options={
                'ordering': ['-overridden_at'],
            },
        ),
        migrations.CreateModel(
            name='Amendment',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('submission_status', models.CharField(choices=[('NOT_SUBMITTED', 'Not Submitted'), ('QUEUED', 'Queued'), ('RETRYING', 'Retrying'), ('SUBMITTED', 'Submitted'), ('FAILED', 'Failed'), ('CANCELLED', 'Cancelled')], db_index=True, default='NOT_SUBMITTED', max_length=20)),
                ('submitted_to_payor', models.BooleanField(default=False)),
                ('payor_approval_status', models.CharField(blank=True, choices=[('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('DENIED', 'Denied'), ('PENDING_INFO', 'Pending Information'), ('APPEALED', 'Appealed')], max_length=20)),
                ('confirmation_id', models.CharField(blank=True, max_length=100)),
                ('submitted_content_hash', models.CharField(blank=True, max_length=64)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('submission_attempt_count', models.PositiveIntegerField(default=0)),
                ('retry_task_id', models.CharField(blank=True, max_length=255)),
                ('next_retry_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('is_superseded', models.BooleanField(db_index=True, default=False)),
                ('superseded_at', models.DateTimeField(blank=True, null=True)),
                ('clock_in_time', models.DateTimeField()),
                ('clock_out_time', models.DateTimeField()),
                ('total_duration', models.PositiveIntegerField(help_text='Minutes')),
                ('reason_code', models.CharField(max_length=50)),
                ('reason', models.TextField()),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('review_notes', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('PENDING_APPROVAL', 'Pending Approval'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected'), ('EXPIRED', 'Expired')], db_index=True, default='PENDING_APPROVAL', max_length=20)),
                ('expires_at', models.DateTimeField(db_index=True)),
                ('original_data', models.JSONField(blank=True, default=dict)),
                ('corrected_data', models.JSONField(blank=True, default=dict)),
                ('changes_summary', models.JSONField(blank=True, default=list)),
                ('compliance_flags', models.JSONField(blank=True, default=list)),
                ('version', models.PositiveIntegerField(default=1)),
                ('original_record', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='amendments', to='evv.evvrecord')),
                ('supersedes_amendment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='superseded_by', to='evv.amendment')),
                ('requested_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='evv_amendments_requested', to=settings.AUTH_USER_MODEL)),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='evv_amendments_reviewed', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='amendment_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='amendment_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_amendment_set', to='core.organization')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='SubmissionAttempt',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('attempt_number', models.PositiveIntegerField()),
                ('attempted_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('aggregator', models.CharField(blank=True, max_length=20)),
                ('outcome', models.CharField(choices=[('SUCCESS', 'Success'), ('FAILED', 'Failed'), ('RETRY_QUEUED', 'Retry Queued'), ('CANCELLED', 'Cancelled')], db_index=True, max_length=20)),
                ('confirmation_id', models.CharField(blank=True, max_length=100)),
                ('transaction_id', models.CharField(blank=True, max_length=100)),
                ('error_code', models.CharField(blank=True, max_length=50)),
                ('failure_reason', models.TextField(blank=True)),
                ('http_status', models.PositiveIntegerField(blank=True, null=True)),
                ('retryable', models.BooleanField(default=False)),
                ('content_hash', models.CharField(blank=True, db_index=True, max_length=64)),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('next_retry_at', models.DateTimeField(blank=True, null=True)),
                ('evv_record', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='submission_attempts', to='evv.evvrecord')),
                ('amendment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='submission_attempts', to='evv.amendment')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='submissionattempt_created', to=settings.AUTH_USER_MODEL)),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='submissionattempt_updated', to=settings.AUTH_USER_MODEL)),
                ('organization', models.ForeignKey(help_text='Organization this record belongs to (primary isolation key)', on_delete=django.db.models.deletion.PROTECT, related_name='evv_submissionattempt_set', to='core.organization')),
            ],
            options={
                'ordering': ['attempted_at', 'attempt_number'],
            },
        ),
    ]
