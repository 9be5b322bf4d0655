import uuid
from datetime import datetime


def generate_loan_id() -> str:
    return f"LN-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:4]}"


def generate_payment_id() -> str:
    return f"PM-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:4]}"
