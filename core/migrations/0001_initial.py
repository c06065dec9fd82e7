import uuid

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.serializers.json
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import core.models
import core.validators


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Enter a valid email address.', max_length=254, unique=True, verbose_name='email address')),
                ('name', models.CharField(blank=True, default='', help_text='Display name.', max_length=100, verbose_name='name')),
                ('phone_number', models.CharField(blank=True, default='', help_text='Optional. Phone number with area code, e.g. (11) 98765-4321.', max_length=20, validators=[core.validators.validate_phone_number], verbose_name='phone number')),
                ('postal_code', models.CharField(blank=True, default='', max_length=9, validators=[core.validators.validate_postal_code], verbose_name='postal code')),
                ('street', models.CharField(blank=True, default='', max_length=200, verbose_name='street')),
                ('house_number', models.CharField(blank=True, default='', max_length=20, verbose_name='house number')),
                ('neighborhood', models.CharField(blank=True, default='', max_length=100, verbose_name='neighborhood')),
                ('city', models.CharField(blank=True, default='', max_length=100, verbose_name='city')),
                ('state', models.CharField(blank=True, default='', max_length=2, validators=[core.validators.validate_state_code], verbose_name='state')),
                ('biography', models.TextField(blank=True, default='', max_length=500, verbose_name='biography')),
                ('contact_email', models.EmailField(blank=True, default='', help_text='Email shown to the other party of a donation.', max_length=254, verbose_name='contact email')),
                ('contact_phone', models.CharField(blank=True, default='', max_length=20, validators=[core.validators.validate_phone_number], verbose_name='contact phone')),
                ('social_networks', models.JSONField(blank=True, default=dict, help_text='Mapping of network name to handle or URL.', verbose_name='social networks')),
                ('profile_image', models.ImageField(blank=True, help_text='Optional. Upload a profile picture (max 5MB, formats: jpg, png, webp).', null=True, upload_to=core.models.user_profile_image_upload_path, validators=[core.validators.validate_profile_image], verbose_name='profile image')),
                ('created_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp when the account was created.', verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the account was last updated.', verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['city', 'state'], name='user_location_idx')],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='DonationCounter',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=50, unique=True, verbose_name='name')),
                ('value', models.PositiveBigIntegerField(default=0, verbose_name='value')),
            ],
            options={
                'verbose_name': 'donation counter',
                'verbose_name_plural': 'donation counters',
            },
        ),
        migrations.CreateModel(
            name='Donation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('sequential_id', models.PositiveIntegerField(editable=False, help_text='Human-friendly donation number.', unique=True, verbose_name='sequential id')),
                ('title', models.CharField(help_text='Between 5 and 100 characters.', max_length=100, validators=[django.core.validators.MinLengthValidator(5)], verbose_name='title')),
                ('description', models.TextField(help_text='Between 10 and 1000 characters.', max_length=1000, validators=[django.core.validators.MinLengthValidator(10)], verbose_name='description')),
                ('category', models.CharField(choices=[('FOOD', 'Food'), ('APPLIANCES', 'Appliances'), ('FURNITURE', 'Furniture'), ('CLOTHING', 'Clothing'), ('ELECTRONICS', 'Electronics'), ('EQUIPMENT', 'Equipment'), ('HOME', 'Home')], max_length=20, verbose_name='category')),
                ('pickup_type', models.CharField(choices=[('PICK_UP_AT_LOCATION', 'Pick up at location'), ('ARRANGE_WITH_DONOR', 'Arrange with donor')], max_length=30, verbose_name='pickup type')),
                ('postal_code', models.CharField(max_length=9, validators=[core.validators.validate_postal_code], verbose_name='postal code')),
                ('street', models.CharField(max_length=200, validators=[django.core.validators.MinLengthValidator(3)], verbose_name='street')),
                ('location_number', models.CharField(max_length=20, validators=[django.core.validators.MinLengthValidator(1)], verbose_name='location number')),
                ('neighborhood', models.CharField(max_length=100, validators=[django.core.validators.MinLengthValidator(2)], verbose_name='neighborhood')),
                ('city', models.CharField(max_length=100, validators=[django.core.validators.MinLengthValidator(2)], verbose_name='city')),
                ('state', models.CharField(max_length=2, validators=[core.validators.validate_state_code], verbose_name='state')),
                ('status', models.CharField(choices=[('OPEN', 'Open'), ('IN_PROGRESS', 'In progress'), ('PICKED_UP', 'Picked up'), ('COMPLETED', 'Completed')], default='OPEN', help_text='Current lifecycle status of the donation', max_length=20, verbose_name='status')),
                ('return_reason', models.TextField(blank=True, help_text='Reason given by the receiver for returning the item', max_length=500, null=True, verbose_name='return reason')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('donor', models.ForeignKey(help_text='User offering the item', on_delete=django.db.models.deletion.CASCADE, related_name='donations', to=settings.AUTH_USER_MODEL)),
                ('receiver', models.ForeignKey(blank=True, help_text='User chosen to receive the item', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='receiving_donations', to=settings.AUTH_USER_MODEL)),
                ('recipient', models.ForeignKey(blank=True, help_text='User that received the item once the donation completed', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='received_donations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'donation',
                'verbose_name_plural': 'donations',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='donation_status_idx'),
                    models.Index(fields=['category'], name='donation_category_idx'),
                    models.Index(fields=['city', 'state'], name='donation_location_idx'),
                    models.Index(fields=['-created_at'], name='donation_created_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('receiver__isnull', True), models.Q(('receiver', models.F('donor')), _negated=True), _connector='OR'), name='donation_donor_not_receiver'),
                    models.CheckConstraint(condition=models.Q(models.Q(('status__in', ['IN_PROGRESS', 'PICKED_UP']), ('receiver__isnull', False)), models.Q(('status__in', ['OPEN', 'COMPLETED']), ('receiver__isnull', True)), _connector='OR'), name='donation_receiver_matches_status'),
                    models.CheckConstraint(condition=models.Q(('return_reason__isnull', True), ('status', 'PICKED_UP'), _connector='OR'), name='donation_return_reason_when_picked_up'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Candidacy',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('applicant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='candidacies', to=settings.AUTH_USER_MODEL)),
                ('donation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='candidacies', to='core.donation')),
            ],
            options={
                'verbose_name': 'candidacy',
                'verbose_name_plural': 'candidacies',
                'ordering': ['created_at', 'id'],
                'constraints': [
                    models.UniqueConstraint(fields=('donation', 'applicant'), name='unique_candidacy_per_applicant'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DonationProgress',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pickup_confirmed_by_donor', models.BooleanField(default=False)),
                ('pickup_confirmed_by_receiver', models.BooleanField(default=False)),
                ('completion_confirmed_by_donor', models.BooleanField(default=False)),
                ('completion_confirmed_by_receiver', models.BooleanField(default=False)),
                ('return_signaled_by_receiver', models.BooleanField(default=False)),
                ('return_confirmed_by_donor', models.BooleanField(default=False)),
                ('return_confirmed_by_receiver', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('donation', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='progress', to='core.donation')),
            ],
            options={
                'verbose_name': 'donation progress',
                'verbose_name_plural': 'donation progress records',
            },
        ),
        migrations.CreateModel(
            name='DonationEditHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('changes', models.JSONField(encoder=django.core.serializers.json.DjangoJSONEncoder, verbose_name='changes')),
                ('edited_at', models.DateTimeField(auto_now_add=True, verbose_name='edited at')),
                ('donation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='edit_history', to='core.donation')),
                ('edited_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='donation_edits', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'donation edit history entry',
                'verbose_name_plural': 'donation edit history',
                'ordering': ['-edited_at', '-id'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='ProfileEditHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('changes', models.JSONField(encoder=django.core.serializers.json.DjangoJSONEncoder, verbose_name='changes')),
                ('edited_at', models.DateTimeField(auto_now_add=True, verbose_name='edited at')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='profile_history', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'profile edit history entry',
                'verbose_name_plural': 'profile edit history',
                'ordering': ['-edited_at', '-id'],
                'abstract': False,
            },
        ),
    ]
