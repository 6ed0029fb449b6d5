"""Pull customer facts (e-mail, order number, phone) out of free text."""

import re
from dataclasses import dataclass
from typing import Optional

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
# "order 123456", "order #AB-1234", "order number: 998877", "#A1B2C3"
ORDER_PATTERN = re.compile(
    r"(?:\border(?:\s*(?:number|no\.?))?|#)\s*[:#]?\s*([A-Za-z0-9-]{6,})",
    re.IGNORECASE,
)
PHONE_PATTERN = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


@dataclass
class CustomerFacts:
    email: Optional[str] = None
    order: Optional[str] = None
    phone: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.email or self.order or self.phone)


def extract_customer_info(text: str) -> CustomerFacts:
    """Extract the first e-mail, order number and phone number in ``text``.

    Order numbers must contain at least one digit, so "order status"
    is not mistaken for an order called "status".
    """
    facts = CustomerFacts()

    email = EMAIL_PATTERN.search(text)
    if email:
        facts.email = email.group(0)

    for match in ORDER_PATTERN.finditer(text):
        candidate = match.group(1)
        if any(ch.isdigit() for ch in candidate):
            facts.order = candidate
            break

    phone = PHONE_PATTERN.search(text)
    if phone:
        facts.phone = phone.group(0)

    return facts
