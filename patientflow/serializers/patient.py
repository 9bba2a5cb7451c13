import bleach
from rest_framework import serializers

from patientflow.enums import BloodType, Gender, Priority


class DemographicsSerializer(serializers.Serializer):
    firstName = serializers.CharField(source='first_name', max_length=100)
    lastName = serializers.CharField(source='last_name', max_length=100)
    dateOfBirth = serializers.DateField(source='date_of_birth', required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=Gender.choices, required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    email = serializers.EmailField(required=False, allow_blank=True)
    nationalId = serializers.CharField(source='national_id', required=False, allow_blank=True, max_length=64)
    bloodType = serializers.ChoiceField(source='blood_type', choices=BloodType.choices, required=False, allow_blank=True)

    def _clean_name(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('name must not be empty')
        return v

    def validate_firstName(self, v):
        return self._clean_name(v)

    def validate_lastName(self, v):
        return self._clean_name(v)

    def validate_phone(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def validate_nationalId(self, v):
        return bleach.clean((v or '').strip(), strip=True)


class PriorityField(serializers.Field):
    """Accepts a priority as its number or its name (``"CRITICAL"``)."""

    default_error_messages = {'invalid': 'unknown priority {value!r}'}

    def to_internal_value(self, data):
        if isinstance(data, str) and not data.isdigit():
            try:
                return Priority[data.strip().upper()]
            except KeyError:
                self.fail('invalid', value=data)
        try:
            return Priority(int(data))
        except (TypeError, ValueError):
            self.fail('invalid', value=data)

    def to_representation(self, value):
        return Priority(value).label.upper()


def coerce_priority(value, default=Priority.MEDIUM) -> Priority:
    if value is None:
        return Priority(default)
    return PriorityField().run_validation(value)
