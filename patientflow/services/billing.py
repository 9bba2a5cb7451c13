import logging
from decimal import Decimal
from typing import Iterable, Optional

from rest_framework.exceptions import ValidationError

from patientflow.models import BillingRecord
from patientflow.serializers.billing import LineItemSerializer, line_item_json

logger = logging.getLogger(__name__)


class BillingService:
    """Invoice creation at discharge.  Pricing of line items is the caller's concern."""

    def create_invoice(self, *, patient, hospital, billed_by, line_items: Iterable[dict], tax=Decimal('0'),
                       discount=Decimal('0'), amount_paid=Decimal('0'), payment_method: Optional[str] = None,
                       notes: str = '') -> BillingRecord:
        s = LineItemSerializer(data=list(line_items), many=True)
        if not s.is_valid():
            raise ValidationError({'items': s.errors})
        record = BillingRecord.build(
            patient=patient, hospital=hospital, billed_by=billed_by,
            items=[line_item_json(i) for i in s.validated_data],
            tax=tax, discount=discount, amount_paid=amount_paid,
            payment_method=payment_method, notes=notes,
        )
        record.save()
        logger.info("billing record %s created for patient %s total=%s", record.id, patient.pk, record.total_amount)
        return record
