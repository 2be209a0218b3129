from django.urls import path
from .views import CancelOrderView, OrderInvoiceView, OrdersCollectionView, OrderStatsView, OrderStatusView
from .views import RetrieveOrderView
app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),
    path("stats/", OrderStatsView.as_view(), name="orders-stats"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/invoice/", OrderInvoiceView.as_view(), name="orders-invoice"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
]
