"""Product catalog collaborator: live price, stock and availability."""
import logging
from decimal import Decimal
from typing import Dict, Iterable, NamedTuple, Optional
from sqlalchemy.orm import Session
from marketplace.models import Product, ProductStock, Seller

logger = logging.getLogger(__name__)


class CatalogPrice(NamedTuple):
    product_id: int
    seller_id: int
    name: str
    unit: str
    unit_price: Decimal
    stock_quantity: int
    minimum_order_quantity: int
    is_active: bool


class ProductCatalog:
    """
    Reads live catalog data.

    Every read bypasses the session identity map (``populate_existing``) so a
    price edited by the seller after the cart was built is always seen.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_price(self, product_id: int) -> Optional[CatalogPrice]:
        """Live price/stock for one product, or None when it does not exist."""
        return self.get_prices([product_id]).get(product_id)

    def get_prices(self, product_ids: Iterable[int]) -> Dict[int, CatalogPrice]:
        """Batch variant of :meth:`get_price`; missing ids are absent from the result."""
        ids = sorted({int(pid) for pid in product_ids})
        if not ids:
            return {}
        
        rows = (self.session.query(Product, ProductStock.on_hand_qty, Seller.active)
                .outerjoin(ProductStock, ProductStock.product_id == Product.id)
                .join(Seller, Seller.id == Product.seller_id)
                .filter(Product.id.in_(ids))
                .populate_existing()
                .all())
        
        prices = {}
        for product, on_hand_qty, seller_active in rows:
            prices[product.id] = CatalogPrice(
                product_id=product.id,
                seller_id=product.seller_id,
                name=product.name,
                unit=product.unit,
                unit_price=Decimal(str(product.unit_price)).quantize(Decimal('0.01')),
                stock_quantity=int(on_hand_qty or 0),
                minimum_order_quantity=int(product.minimum_order_quantity or 1),
                is_active=bool(product.active and seller_active),
            )
        return prices

    def available_stock(self, product_id: int) -> int:
        qty = self.session.query(ProductStock.on_hand_qty).filter(
            ProductStock.product_id == product_id
        ).scalar()
        return int(qty or 0)

    def decrement_stock(self, product_id: int, qty: int) -> bool:
        """
        Compare-and-set decrement: only succeeds while on_hand_qty >= qty.

        Returns False when the row lost a race (or never had enough stock).
        Runs inside the caller's transaction; the caller commits or rolls back.
        """
        updated = self.session.query(ProductStock).filter(
            ProductStock.product_id == product_id,
            ProductStock.on_hand_qty >= qty
        ).update(
            {ProductStock.on_hand_qty: ProductStock.on_hand_qty - qty},
            synchronize_session=False
        )
        if updated != 1:
            logger.info(f"Stock decrement refused for product {product_id} (requested {qty})")
            return False
        return True
