from django.urls import include, path

urlpatterns = [
    path("", include("apps.monitoring.urls")),
    path("api/checkout/", include("apps.checkout.urls")),
    path("api/orders/", include("apps.orders.urls")),
]
