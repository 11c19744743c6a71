import uuid

from models.utils import utcnow


class ReferenceGenerate:
    def generate_reference(self) -> str:
        return str(uuid.uuid4().int)[:12]

    def transaction_ref(self, payment_id: uuid.UUID) -> str:
        return f"PMT-{payment_id.hex}-{uuid.uuid4().hex[:12]}"

    def receipt_number(self) -> str:
        return f"RCP-{utcnow():%Y%m%d}-{self.generate_reference()}"

    def payout_reference(self, payment_id: uuid.UUID, prefix: str = "PAYOUT") -> str:
        # Stable per payment so a retried payout is deduplicated by the provider.
        return f"{prefix}-{payment_id.hex}"


reference_generate = ReferenceGenerate()
