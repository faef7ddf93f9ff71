#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from storefront.data.models.variant import VariantModel
from storefront.data.models.order import OrderModel, OrderItemModel
from storefront.data.models.cart_item import CartItemModel

__all__ = ["VariantModel", "OrderModel", "OrderItemModel", "CartItemModel"]
