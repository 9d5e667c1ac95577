from django.urls import path

from .views import (
    CartItemView,
    CartView,
    CheckoutView,
    OrderDetailView,
    OrderPaymentView,
    OrdersCollectionView,
    PaymentWebhookView,
    WishlistItemView,
    WishlistView,
)

app_name = "orders"

urlpatterns = [
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("orders/<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),  # GET / PUT admin edit
    path("orders/<uuid:oid>/pay/", OrderPaymentView.as_view(), name="orders-pay"),
    path("payments/webhook/", PaymentWebhookView.as_view(), name="payments-webhook"),
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("cart/", CartView.as_view(), name="cart"),
    path("cart/items/<str:product_ref>/", CartItemView.as_view(), name="cart-item"),
    path("wishlist/", WishlistView.as_view(), name="wishlist"),
    path("wishlist/items/<str:product_ref>/", WishlistItemView.as_view(), name="wishlist-item"),
]
