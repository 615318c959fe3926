#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from storefront.data.models.user import UserModel
from storefront.data.models.product import ProductModel, ProductVariantModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.coupon import CouponModel, CouponUseModel
from storefront.data.models.gift_card import GiftCardModel
from storefront.data.models.order import OrderModel, OrderItemModel

__all__ = [
    "UserModel",
    "ProductModel",
    "ProductVariantModel",
    "CartModel",
    "CartItemModel",
    "CouponModel",
    "CouponUseModel",
    "GiftCardModel",
    "OrderModel",
    "OrderItemModel",
]
