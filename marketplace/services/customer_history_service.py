"""Customer history collaborator (corporate discount eligibility)."""
from sqlalchemy import func
from sqlalchemy.orm import Session
from marketplace.models import OrderSnapshot


class CustomerHistory:
    """Counts a customer's completed orders with a seller."""

    def __init__(self, session: Session):
        self.session = session

    def get_completed_order_count(self, customer_id: int, seller_id: int) -> int:
        count = self.session.query(func.count(OrderSnapshot.id)).filter(
            OrderSnapshot.customer_id == customer_id,
            OrderSnapshot.seller_id == seller_id
        ).scalar()
        return int(count or 0)
