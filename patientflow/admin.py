"""
Django admin registrations for the patient-flow models.

Ledger, notification and audit rows are listed read-only in spirit;
state changes go through :class:`patientflow.services.flow.FlowEngine`
so that invariants and alerts are applied.
"""

from django.contrib import admin

from .models import (
    Assignment,
    AuditEvent,
    BillingRecord,
    Department,
    Hospital,
    Notification,
    Patient,
    User,
)


@admin.register(Hospital)
class HospitalAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'county', 'is_active', 'created_at')
    search_fields = ('name', 'county')


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'hospital', 'department', 'is_staff', 'is_superuser')
    list_filter = ('role', 'hospital', 'department')
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('name', 'hospital', 'category', 'min_operators', 'available_beds', 'is_operational')
    list_filter = ('category', 'is_operational', 'hospital')
    filter_horizontal = ('operators',)


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('id', 'first_name', 'last_name', 'hospital', 'current_department', 'status', 'assigned_doctor')
    list_filter = ('status', 'current_department', 'hospital')
    search_fields = ('first_name', 'last_name', 'national_id', 'phone')


@admin.register(Assignment)
class AssignmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'department', 'status', 'priority', 'created_at', 'completed_at')
    list_filter = ('status', 'priority', 'department')
    search_fields = ('patient__first_name', 'patient__last_name')
    readonly_fields = ('transfer_history',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'recipient', 'type', 'is_read', 'delivered_at', 'delivery_attempts', 'created_at')
    list_filter = ('type', 'is_read')


@admin.register(BillingRecord)
class BillingRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'total_amount', 'amount_paid', 'balance', 'status', 'billing_date')
    list_filter = ('status', 'payment_method')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'action', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id',)
