"""
Management command to onboard a demo hospital with staff.
"""
from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from patientflow.enums import DepartmentName, Role
from patientflow.exceptions import FlowError
from patientflow.models import Hospital, User
from patientflow.services import registry

# username suffix, role, department
STAFF = [
    ("reception", Role.RECEPTIONIST, DepartmentName.RECEPTION),
    ("triage", Role.NURSE, DepartmentName.TRIAGE),
    ("er1", Role.DOCTOR, DepartmentName.EMERGENCY),
    ("er2", Role.NURSE, DepartmentName.EMERGENCY),
    ("opd", Role.DOCTOR, DepartmentName.OUTPATIENT),
    ("lab", Role.LAB_TECHNICIAN, DepartmentName.LABORATORY),
    ("pharmacy", Role.PHARMACIST, DepartmentName.PHARMACY),
    ("billing", Role.DEPARTMENT_OPERATOR, DepartmentName.BILLING),
]


class Command(BaseCommand):
    help = "Onboard a hospital with its standard departments and one operator per staffed department."

    def add_arguments(self, parser):
        parser.add_argument('name', nargs='?', default='Demo General Hospital')
        parser.add_argument('--county', default='')
        parser.add_argument('--password', default='P@ssw0rd1')
        parser.add_argument('--prefix', default='demo')

    @transaction.atomic
    def handle(self, *args, **opts):
        name = opts['name']
        if Hospital.objects.filter(name=name).exists():
            raise CommandError(f"hospital {name!r} already exists")
        try:
            hospital, depts = registry.onboard_hospital(name, county=opts['county'])
        except FlowError as exc:
            raise CommandError(str(exc.detail)) from exc
        by_name = {d.name: d for d in depts}
        self.stdout.write(f"Hospital {hospital.name} created with {len(depts)} departments")

        admin = User.objects.create(
            username=f"{opts['prefix']}_admin", role=Role.HOSPITAL_ADMIN, hospital=hospital,
            password=make_password(opts['password']), department=DepartmentName.ADMINISTRATION,
        )
        self.stdout.write(self.style.SUCCESS(f"ok: {admin.username} ({admin.role})"))

        for suffix, role, dept_name in STAFF:
            user = User.objects.create(
                username=f"{opts['prefix']}_{suffix}", role=role, hospital=hospital,
                password=make_password(opts['password']),
            )
            registry.add_operator(by_name[dept_name].pk, user.pk, actor=admin)
            self.stdout.write(self.style.SUCCESS(f"ok: {user.username} ({role}) -> {dept_name}"))

        self.stdout.write(self.style.SUCCESS("Hospital seeded."))
