from decimal import Decimal

import bleach
from rest_framework import serializers

from patientflow.enums import BillingCategory, PaymentMethod

MONEY = dict(max_digits=12, decimal_places=2, min_value=Decimal('0'))


class LineItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    category = serializers.ChoiceField(choices=BillingCategory.choices)
    unitPrice = serializers.DecimalField(**MONEY)
    quantity = serializers.IntegerField(min_value=1, default=1)
    discount = serializers.DecimalField(default=Decimal('0'), **MONEY)

    def validate_description(self, v):
        return bleach.clean(v.strip(), strip=True)

    def validate(self, attrs):
        if attrs['discount'] > attrs['unitPrice'] * attrs['quantity']:
            raise serializers.ValidationError({'discount': 'discount exceeds line total'})
        return attrs


def line_item_json(item: dict) -> dict:
    """Stored form of a validated line item; amounts are kept as strings."""
    return {
        'description': item['description'],
        'category': item['category'],
        'unitPrice': str(item['unitPrice']),
        'quantity': item['quantity'],
        'discount': str(item['discount']),
    }


class BillingDetailsSerializer(serializers.Serializer):
    items = LineItemSerializer(many=True, allow_empty=False)
    tax = serializers.DecimalField(default=Decimal('0'), **MONEY)
    discount = serializers.DecimalField(default=Decimal('0'), **MONEY)
    amountPaid = serializers.DecimalField(source='amount_paid', default=Decimal('0'), **MONEY)
    paymentMethod = serializers.ChoiceField(source='payment_method', choices=PaymentMethod.choices,
                                            required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate_notes(self, v):
        return bleach.clean((v or '').strip(), strip=True)
