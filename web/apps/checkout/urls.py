from django.urls import path
from .views import CheckoutView, VerifyPaymentView

app_name = "checkout"

urlpatterns = [
    path("", CheckoutView.as_view(), name="checkout"),
    path("verify/", VerifyPaymentView.as_view(), name="verify"),
]
